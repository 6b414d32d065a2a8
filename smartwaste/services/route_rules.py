"""
Route progress, ETA and statistics rules
"""
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from smartwaste.errors import InvalidState
from smartwaste.models.enums import RouteStatus
from smartwaste.services.collection_rules import total_volume, total_weight

DEFAULT_MINUTES_PER_BIN = 10

TRANSITIONS = {
    RouteStatus.ACTIVE: {
        RouteStatus.IN_PROGRESS,
        RouteStatus.COMPLETED,
        RouteStatus.PAUSED,
        RouteStatus.CANCELLED,
    },
    RouteStatus.IN_PROGRESS: {
        RouteStatus.COMPLETED,
        RouteStatus.PAUSED,
        RouteStatus.CANCELLED,
    },
    RouteStatus.PAUSED: {
        RouteStatus.ACTIVE,
        RouteStatus.IN_PROGRESS,
        RouteStatus.COMPLETED,
        RouteStatus.CANCELLED,
    },
    RouteStatus.COMPLETED: set(),
    RouteStatus.CANCELLED: set(),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def check_transition(current: str, new: RouteStatus):
    current_status = RouteStatus(current)
    if new not in TRANSITIONS[current_status]:
        raise InvalidState(f"Cannot move route from {current_status.value} to {new.value}")


def route_bin_ids(route: Dict[str, Any]) -> List[Any]:
    return [entry.get("bin") for entry in route.get("bins") or []]


def progress(route: Dict[str, Any]) -> int:
    bins = route.get("bins") or []
    if not bins:
        return 0
    completed = len(route.get("completed_bins") or [])
    return round_half_up(100 * completed / len(bins))


def remaining_bins(route: Dict[str, Any]) -> List[Dict[str, Any]]:
    completed = {str(bin_id) for bin_id in route.get("completed_bins") or []}
    return [entry for entry in route.get("bins") or [] if str(entry.get("bin")) not in completed]


def estimated_completion(
    route: Dict[str, Any],
    now: datetime,
    default_minutes_per_bin: float = DEFAULT_MINUTES_PER_BIN
) -> datetime:
    stats = route.get("stats") or {}
    minutes_per_bin = stats.get("average_time_per_bin") or default_minutes_per_bin
    return now + timedelta(minutes=len(remaining_bins(route)) * minutes_per_bin)


def is_overdue(route: Dict[str, Any], now: datetime) -> bool:
    scheduled_at = route.get("scheduled_at")
    return (
        route.get("status") == RouteStatus.ACTIVE.value
        and scheduled_at is not None
        and scheduled_at < now
        and progress(route) < 100
    )


def actual_duration_min(started_at: Optional[datetime], ended_at: datetime) -> Optional[int]:
    if started_at is None:
        return None
    return round_half_up((ended_at - started_at).total_seconds() / 60)


def estimated_duration_min(bins: Iterable[Dict[str, Any]]) -> int:
    return sum(int(entry.get("estimated_minutes") or 0) for entry in bins)


def route_stats(
    route: Dict[str, Any],
    collections: Iterable[Dict[str, Any]],
    duration_min: Optional[int]
) -> Dict[str, Any]:
    """Recompute route statistics from every collection that references it"""
    count = 0
    weight = 0.0
    volume = 0.0
    for collection in collections:
        count += 1
        composition = collection.get("waste_composition")
        weight += total_weight(composition)
        volume += total_volume(composition)

    bins = route.get("bins") or []
    average = duration_min / len(bins) if bins and duration_min is not None else 0
    return {
        "total_collections": count,
        "total_weight": weight,
        "total_volume": volume,
        "average_time_per_bin": average,
    }
