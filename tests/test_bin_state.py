from datetime import timedelta

import pytest

from smartwaste.errors import InvalidInput
from smartwaste.models.enums import BinStatus
from smartwaste.services import bin_state

from conftest import NOW


@pytest.mark.parametrize("fill_level,expected", [
    (0, BinStatus.EMPTY),
    (24.9, BinStatus.EMPTY),
    (25, BinStatus.PARTIAL),
    (74.99, BinStatus.PARTIAL),
    (75, BinStatus.FULL),
    (89.9, BinStatus.FULL),
    (90, BinStatus.OVERFLOWING),
    (100, BinStatus.OVERFLOWING),
])
def test_derive_status_thresholds(fill_level, expected):
    assert bin_state.derive_status(fill_level) == expected


def test_derive_status_is_monotonic():
    ranks = [bin_state.STATUS_RANK[bin_state.derive_status(level)] for level in range(0, 101)]
    assert ranks == sorted(ranks)


def test_apply_fill_adds_delta():
    assert bin_state.apply_fill({"fill_level": 20, "status": "empty"}, 10) == (30, BinStatus.PARTIAL)


def test_apply_fill_caps_at_capacity():
    assert bin_state.apply_fill({"fill_level": 95, "capacity_percent": 100}, 10) == (100, BinStatus.OVERFLOWING)
    assert bin_state.apply_fill({"fill_level": 70, "capacity_percent": 80}, 20) == (80, BinStatus.FULL)


@pytest.mark.parametrize("delta", [0, -5])
def test_apply_fill_rejects_non_positive_delta(delta):
    with pytest.raises(InvalidInput):
        bin_state.apply_fill({"fill_level": 10}, delta)


def test_maintenance_survives_fills():
    fill_level, status = bin_state.apply_fill({"fill_level": 10, "status": "maintenance"}, 90)
    assert fill_level == 100
    assert status == BinStatus.MAINTENANCE


def test_needs_collection_when_nearly_full():
    bin_doc = {"fill_level": 80, "last_collected_at": NOW, "collection_frequency_days": 7}
    assert bin_state.needs_collection(bin_doc, NOW)


def test_needs_collection_when_frequency_elapsed():
    bin_doc = {"fill_level": 10, "last_collected_at": NOW - timedelta(days=8), "collection_frequency_days": 7}
    assert bin_state.needs_collection(bin_doc, NOW)


def test_recently_collected_bin_does_not_need_collection():
    bin_doc = {"fill_level": 10, "last_collected_at": NOW - timedelta(days=2), "collection_frequency_days": 7}
    assert not bin_state.needs_collection(bin_doc, NOW)


def test_never_collected_bin_needs_collection():
    assert bin_state.needs_collection({"fill_level": 0, "last_collected_at": None}, NOW)


def test_average_fill_level():
    assert bin_state.average_fill_level({"total_collections": 4, "collected_fill_sum": 250}) == 62.5
    assert bin_state.average_fill_level({"total_collections": 0, "collected_fill_sum": 0}) == 0
    assert bin_state.average_fill_level(None) == 0


def test_maintenance_entry_requires_type():
    with pytest.raises(InvalidInput):
        bin_state.maintenance_entry("", None, "someone", NOW)
    entry = bin_state.maintenance_entry("repair", "lid hinge", "someone", NOW)
    assert entry == {"date": NOW, "type": "repair", "description": "lid hinge", "performed_by": "someone"}
