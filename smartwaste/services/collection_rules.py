"""
Collection state machine and derived values
"""
from datetime import datetime
from typing import Any, Dict, Optional
from smartwaste.errors import InvalidInput, InvalidState
from smartwaste.models.enums import CollectionStatus, WasteCategory

TRANSITIONS = {
    CollectionStatus.ASSIGNED: {
        CollectionStatus.IN_PROGRESS,
        CollectionStatus.COMPLETED,
        CollectionStatus.CANCELLED,
    },
    CollectionStatus.IN_PROGRESS: {
        CollectionStatus.COMPLETED,
        CollectionStatus.CANCELLED,
    },
    CollectionStatus.COMPLETED: set(),
    CollectionStatus.CANCELLED: set(),
}

MIN_RATING = 1
MAX_RATING = 5


def check_transition(current: str, new: CollectionStatus):
    current_status = CollectionStatus(current)
    if new not in TRANSITIONS[current_status]:
        raise InvalidState(f"Cannot move collection from {current_status.value} to {new.value}")


def _sum_field(composition: Optional[Dict[str, Any]], field: str) -> float:
    if not composition:
        return 0.0
    total = 0.0
    for category in WasteCategory:
        entry = composition.get(category.value) or {}
        total += float(entry.get(field) or 0)
    return total


def total_weight(composition: Optional[Dict[str, Any]]) -> float:
    return _sum_field(composition, "weight")


def total_volume(composition: Optional[Dict[str, Any]]) -> float:
    return _sum_field(composition, "volume")


def validate_fill_level_after(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    if not 0 <= value <= 100:
        raise InvalidInput("fill_level_after must be between 0 and 100")
    return float(value)


def validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidInput("Rating must be an integer")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidInput(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    return rating


def is_overdue(collection: Dict[str, Any], now: datetime) -> bool:
    scheduled_at = collection.get("scheduled_at")
    return (
        collection.get("status") == CollectionStatus.ASSIGNED.value
        and scheduled_at is not None
        and now > scheduled_at
    )


def duration_min(collection: Dict[str, Any]) -> Optional[int]:
    """Minutes from scheduled to completed time, floored"""
    completed_at = collection.get("completed_at")
    scheduled_at = collection.get("scheduled_at")
    if completed_at is None or scheduled_at is None:
        return None
    return int((completed_at - scheduled_at).total_seconds() // 60)
