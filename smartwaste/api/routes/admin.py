"""
API routes for admin operations
"""
import logging
from fastapi import APIRouter, BackgroundTasks, Depends
from smartwaste.api.deps import emit, get_principal
from smartwaste.models.enums import Role
from smartwaste.models.schemas import NotificationCreate
from smartwaste.services import events
from smartwaste.services.capabilities import Principal, require_role
from smartwaste.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/notifications")
async def send_notification(
    data: NotificationCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
):
    """Broadcast a notice to every connected client"""
    require_role(principal, Role.ADMIN)
    sent_at = utcnow()
    emit(background_tasks, [events.admin_notification(data.title, data.message, data.type, sent_at)])
    logger.info(f"Admin {principal.id} broadcast '{data.title}' ({data.type})")
    return {
        "message": "Notification sent successfully",
        "notification": {
            "title": data.title,
            "message": data.message,
            "type": data.type,
            "sent_at": sent_at,
        },
    }
