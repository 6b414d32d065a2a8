"""
Events produced by business operations

Operations return their result together with the events to emit; delivery is
handled by NotificationDispatcher after the operation has been persisted.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field

T = TypeVar("T")

ROOM_BINS = "bins"
ROOM_COLLECTIONS = "collections"
ROOM_ADMIN = "admin"
ROOM_ALL = "all"


def collector_room(collector_id: Any) -> str:
    return f"collector-{collector_id}"


class Event(BaseModel):
    """A fire-and-forget notification"""
    name: str
    room: str
    payload: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class Outcome(Generic[T]):
    """Operation result plus the events it produced"""
    result: T
    events: List[Event] = field(default_factory=list)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def new_collection_request(collection_id: Any, bin_name: str, kind: str,
                           scheduled_at: datetime, collector_id: Any) -> Event:
    return Event(
        name="newCollectionRequest",
        room=collector_room(collector_id),
        payload={
            "collectionId": str(collection_id),
            "binName": bin_name,
            "kind": kind,
            "scheduledAt": _iso(scheduled_at),
        },
    )


def bin_updated(bin_id: Any, fill_level: float, status: str) -> Event:
    return Event(
        name="binUpdated",
        room=ROOM_BINS,
        payload={"binId": str(bin_id), "fillLevel": fill_level, "status": status},
    )


def collection_updated(collection_id: Any, status: str,
                       completed_at: Optional[datetime]) -> Event:
    return Event(
        name="collectionUpdated",
        room=ROOM_COLLECTIONS,
        payload={
            "collectionId": str(collection_id),
            "status": status,
            "completedAt": _iso(completed_at),
        },
    )


def route_started(route_id: Any, started_at: datetime, collector_id: Any) -> Event:
    return Event(
        name="routeStarted",
        room=collector_room(collector_id),
        payload={"routeId": str(route_id), "startedAt": _iso(started_at)},
    )


def route_completed(route_id: Any, ended_at: datetime,
                    actual_duration_min: Optional[int]) -> Event:
    return Event(
        name="routeCompleted",
        room=ROOM_ADMIN,
        payload={
            "routeId": str(route_id),
            "endedAt": _iso(ended_at),
            "actualDurationMin": actual_duration_min,
        },
    )


def admin_notification(title: str, message: str, notification_type: str, sent_at: datetime) -> Event:
    """Broadcast from an admin to every connected client"""
    return Event(
        name="adminNotification",
        room=ROOM_ALL,
        payload={
            "title": title,
            "message": message,
            "type": notification_type,
            "timestamp": _iso(sent_at),
        },
    )
