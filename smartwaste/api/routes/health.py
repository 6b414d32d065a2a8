"""
Health check and system alert endpoints
"""
from fastapi import APIRouter, Depends
from smartwaste.api.deps import get_principal
from smartwaste.database import get_database
from smartwaste.models.enums import Role
from smartwaste.services.capabilities import Principal, require_role
from smartwaste.services.statistics import StatisticsAggregator
from smartwaste.utils import utcnow

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": "smart_waste",
        "database": "connected" if get_database() is not None else "unavailable",
        "timestamp": utcnow().isoformat(),
    }


@router.get("/alerts")
async def get_alerts(principal: Principal = Depends(get_principal)):
    """
    Operational alerts for admins

    Returns:
        warning when too many collections are overdue, critical when too
        many bins are overflowing
    """
    require_role(principal, Role.ADMIN)
    alerts = await StatisticsAggregator().system_alerts(utcnow())
    return {
        "status": "degraded" if alerts else "healthy",
        "alerts": alerts,
    }
