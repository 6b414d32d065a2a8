"""
Request-scoped dependencies shared by the API routers
"""
from datetime import datetime
from typing import Iterable, Optional, Tuple
from bson import ObjectId
from fastapi import BackgroundTasks, Header, HTTPException, Query
from smartwaste.clients.notifications import get_dispatcher
from smartwaste.errors import InvalidInput
from smartwaste.models.enums import Role
from smartwaste.services.capabilities import Principal
from smartwaste.services.events import Event
from smartwaste.services.statistics import period_window
from smartwaste.utils import naive_utc, utcnow

DEFAULT_PERIOD_DAYS = 30
TRUE_VALUES = {"1", "true", "yes"}


async def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_premium_active: Optional[str] = Header(None),
) -> Principal:
    """
    Caller identity as forwarded by the authenticating gateway

    Raises:
        HTTPException 401 when the identity headers are missing or malformed
    """
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    if not x_user_id or not x_user_role or not ObjectId.is_valid(x_user_id):
        raise credentials_exception
    try:
        role = Role(x_user_role)
    except ValueError:
        raise credentials_exception

    return Principal(
        id=x_user_id,
        role=role,
        premium_active=(x_premium_active or "").strip().lower() in TRUE_VALUES,
    )


def emit(background_tasks: BackgroundTasks, events: Iterable[Event]):
    """Schedule event delivery to run after the response is sent"""
    events = list(events)
    if events:
        background_tasks.add_task(get_dispatcher().dispatch, events)


async def reporting_window(
    period: Optional[int] = Query(None, ge=1, description="Days back from now"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """Explicit start/end when both are given, else the last `period` days"""
    if start is not None and end is not None:
        start, end = naive_utc(start), naive_utc(end)
        if start > end:
            raise InvalidInput("start must not be after end")
        return start, end
    if start is not None or end is not None:
        raise InvalidInput("start and end must be given together")
    return period_window(period or DEFAULT_PERIOD_DAYS, utcnow())
