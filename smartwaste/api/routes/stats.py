"""
API routes for reporting statistics
"""
from fastapi import APIRouter, Depends
from typing import Optional, Tuple
from datetime import datetime
from smartwaste.api.deps import get_principal, reporting_window
from smartwaste.models.enums import Role
from smartwaste.services.capabilities import Principal, is_admin, require_role
from smartwaste.services.statistics import StatisticsAggregator
from smartwaste.utils import utcnow

router = APIRouter(prefix="/api/stats", tags=["stats"])

Window = Tuple[datetime, datetime]


def _period(window: Window) -> dict:
    start, end = window
    return {"start": start, "end": end}


@router.get("/dashboard")
async def get_dashboard(principal: Principal = Depends(get_principal)):
    """Headline numbers for the admin dashboard"""
    require_role(principal, Role.ADMIN)
    return await StatisticsAggregator().dashboard(utcnow())


@router.get("/bins")
async def get_bin_statistics(
    window: Window = Depends(reporting_window),
    principal: Principal = Depends(get_principal),
):
    require_role(principal, Role.ADMIN)
    stats = await StatisticsAggregator().bin_statistics(*window)
    return {"period": _period(window), **stats}


@router.get("/collections")
async def get_collection_statistics(
    window: Window = Depends(reporting_window),
    principal: Principal = Depends(get_principal),
):
    require_role(principal, Role.ADMIN)
    stats = await StatisticsAggregator().collection_statistics(*window)
    return {"period": _period(window), **stats}


@router.get("/routes")
async def get_route_statistics(
    window: Window = Depends(reporting_window),
    principal: Principal = Depends(get_principal),
):
    require_role(principal, Role.ADMIN)
    stats = await StatisticsAggregator().route_statistics(*window)
    return {"period": _period(window), **stats}


@router.get("/collectors")
async def get_collector_performance(
    window: Window = Depends(reporting_window),
    principal: Principal = Depends(get_principal),
):
    require_role(principal, Role.ADMIN)
    collectors = await StatisticsAggregator().collector_performance(*window)
    return {"period": _period(window), "collectors": collectors}


@router.get("/users")
async def get_user_statistics(
    window: Window = Depends(reporting_window),
    principal: Principal = Depends(get_principal),
):
    require_role(principal, Role.ADMIN)
    stats = await StatisticsAggregator().user_statistics(*window, now=utcnow())
    return {"period": _period(window), **stats}


@router.get("/payments")
async def get_payment_statistics(
    user_id: Optional[str] = None,
    window: Window = Depends(reporting_window),
    principal: Principal = Depends(get_principal),
):
    """
    Completed payment totals

    Admins may look at any user or the whole ledger; everyone else sees
    their own payments only.
    """
    if not is_admin(principal):
        user_id = principal.id
    stats = await StatisticsAggregator().payment_statistics(*window, user_id=user_id)
    return {"period": _period(window), **stats}
