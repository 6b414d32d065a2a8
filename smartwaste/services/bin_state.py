"""
Fill-level and status rules for bins

All functions are pure: they take document snapshots and return new values,
leaving persistence to BinService.
"""
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from smartwaste.errors import InvalidInput
from smartwaste.models.enums import BinStatus

OVERFLOWING_THRESHOLD = 90
FULL_THRESHOLD = 75
PARTIAL_THRESHOLD = 25
NEEDS_COLLECTION_THRESHOLD = 80
DEFAULT_CAPACITY = 100
DEFAULT_COLLECTION_FREQUENCY_DAYS = 7

STATUS_RANK = {
    BinStatus.EMPTY: 0,
    BinStatus.PARTIAL: 1,
    BinStatus.FULL: 2,
    BinStatus.OVERFLOWING: 3,
}


def derive_status(fill_level: float) -> BinStatus:
    if fill_level >= OVERFLOWING_THRESHOLD:
        return BinStatus.OVERFLOWING
    if fill_level >= FULL_THRESHOLD:
        return BinStatus.FULL
    if fill_level >= PARTIAL_THRESHOLD:
        return BinStatus.PARTIAL
    return BinStatus.EMPTY


def next_status(current_status: Optional[str], fill_level: float) -> BinStatus:
    """Maintenance is a manual override and survives fill changes"""
    if current_status == BinStatus.MAINTENANCE.value:
        return BinStatus.MAINTENANCE
    return derive_status(fill_level)


def apply_fill(bin_doc: Dict[str, Any], delta: float) -> Tuple[float, BinStatus]:
    """
    Add a disposal to a bin snapshot

    Args:
        bin_doc: Bin document
        delta: Percentage points added, must be positive

    Returns:
        (new fill level capped at capacity, new status)
    """
    if delta is None or delta <= 0:
        raise InvalidInput("Fill delta must be positive")
    capacity = bin_doc.get("capacity_percent") or DEFAULT_CAPACITY
    fill_level = min(float(bin_doc.get("fill_level") or 0) + delta, capacity)
    return fill_level, next_status(bin_doc.get("status"), fill_level)


def days_since_collection(bin_doc: Dict[str, Any], now: datetime) -> int:
    frequency = bin_doc.get("collection_frequency_days") or DEFAULT_COLLECTION_FREQUENCY_DAYS
    last_collected = bin_doc.get("last_collected_at")
    if last_collected is None:
        return frequency
    return (now - last_collected).days


def needs_collection(bin_doc: Dict[str, Any], now: datetime) -> bool:
    frequency = bin_doc.get("collection_frequency_days") or DEFAULT_COLLECTION_FREQUENCY_DAYS
    if float(bin_doc.get("fill_level") or 0) >= NEEDS_COLLECTION_THRESHOLD:
        return True
    return days_since_collection(bin_doc, now) >= frequency


def maintenance_entry(
    entry_type: str,
    description: Optional[str],
    performed_by: Any,
    now: datetime
) -> Dict[str, Any]:
    if not entry_type:
        raise InvalidInput("Maintenance type is required")
    return {
        "date": now,
        "type": entry_type,
        "description": description,
        "performed_by": performed_by,
    }


def average_fill_level(stats: Optional[Dict[str, Any]]) -> float:
    stats = stats or {}
    total = stats.get("total_collections") or 0
    if total <= 0:
        return 0.0
    return round(float(stats.get("collected_fill_sum") or 0) / total, 2)
