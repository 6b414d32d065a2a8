"""
API routes for collector routes
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Any, Dict, Optional
from datetime import datetime
from smartwaste.api.deps import emit, get_principal
from smartwaste.config import settings
from smartwaste.models.schemas import Route, RouteCreate, RoutesResponse, RouteUpdate
from smartwaste.services import route_rules
from smartwaste.services.capabilities import Principal
from smartwaste.services.route_scheduler import RouteScheduler
from smartwaste.utils import pagination, serialize_doc, utcnow

router = APIRouter(prefix="/api/routes", tags=["routes"])


def present_route(doc: Dict[str, Any], now: Optional[datetime] = None) -> Route:
    """Route document to response model with progress and ETA"""
    now = now or utcnow()
    cleaned = serialize_doc(doc)
    cleaned["progress"] = route_rules.progress(doc)
    cleaned["remaining_bins"] = serialize_doc(route_rules.remaining_bins(doc))
    cleaned["estimated_completion"] = route_rules.estimated_completion(
        doc, now, settings.default_minutes_per_bin
    )
    cleaned["is_overdue"] = route_rules.is_overdue(doc, now)
    return Route(**cleaned)


@router.post("", response_model=Route, status_code=201)
async def create_route(data: RouteCreate, principal: Principal = Depends(get_principal)):
    """
    Create a route for a collector (admin)

    With generate_collections set, one scheduled collection is created per bin.
    """
    route = await RouteScheduler().create_route(principal, data.model_dump())
    return present_route(route)


@router.get("", response_model=RoutesResponse)
async def list_routes(
    status: Optional[str] = None,
    collector_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_principal),
):
    routes, total = await RouteScheduler().list_routes(principal, status, collector_id, page, limit)
    now = utcnow()
    return RoutesResponse(
        routes=[present_route(doc, now) for doc in routes],
        pagination=pagination(total, page, limit),
    )


@router.get("/{route_id}", response_model=Route)
async def get_route(route_id: str, principal: Principal = Depends(get_principal)):
    return present_route(await RouteScheduler().get_route(principal, route_id))


@router.put("/{route_id}", response_model=Route)
async def update_route(route_id: str, data: RouteUpdate, principal: Principal = Depends(get_principal)):
    route = await RouteScheduler().update_route(principal, route_id, data.model_dump(exclude_none=True))
    return present_route(route)


@router.delete("/{route_id}")
async def delete_route(route_id: str, principal: Principal = Depends(get_principal)):
    await RouteScheduler().delete_route(principal, route_id)
    return {"message": "Route deleted successfully"}


@router.put("/{route_id}/start", response_model=Route)
async def start_route(
    route_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    outcome = await RouteScheduler().start(principal, route_id)
    emit(background_tasks, outcome.events)
    return present_route(outcome.result)


@router.put("/{route_id}/complete", response_model=Route)
async def complete_route(
    route_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    outcome = await RouteScheduler().complete(principal, route_id)
    emit(background_tasks, outcome.events)
    return present_route(outcome.result)


@router.put("/{route_id}/pause", response_model=Route)
async def pause_route(route_id: str, principal: Principal = Depends(get_principal)):
    return present_route(await RouteScheduler().pause(principal, route_id))


@router.put("/{route_id}/resume", response_model=Route)
async def resume_route(route_id: str, principal: Principal = Depends(get_principal)):
    return present_route(await RouteScheduler().resume(principal, route_id))


@router.put("/{route_id}/cancel", response_model=Route)
async def cancel_route(route_id: str, principal: Principal = Depends(get_principal)):
    return present_route(await RouteScheduler().cancel(principal, route_id))
