"""
Shared fixtures: an in-process Motor-compatible store, a controllable clock
and a few users of each role
"""
from datetime import datetime, timedelta

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from smartwaste.models.enums import Role
from smartwaste.services.capabilities import Principal

NOW = datetime(2024, 5, 1, 12, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def mock_db():
    client = AsyncMongoMockClient()
    return client["smart_waste_test"]


@pytest.fixture
def clock():
    return FakeClock()


async def _insert_user(db, role: Role, **extra) -> dict:
    user = {
        "name": f"{role.value} user",
        "email": f"{ObjectId()}@example.com",
        "role": role.value,
        "is_active": True,
        "is_premium": role == Role.PREMIUM_RESIDENT,
        "premium_expiry": None,
        "stats": {},
        "created_at": NOW - timedelta(days=3),
    }
    user.update(extra)
    result = await db.users.insert_one(user)
    user["_id"] = result.inserted_id
    return user


@pytest.fixture
def make_user(mock_db):
    async def factory(role: Role, **extra) -> dict:
        return await _insert_user(mock_db, role, **extra)
    return factory


@pytest.fixture
async def admin(mock_db):
    user = await _insert_user(mock_db, Role.ADMIN)
    return Principal(id=str(user["_id"]), role=Role.ADMIN)


@pytest.fixture
async def collector(mock_db):
    user = await _insert_user(mock_db, Role.COLLECTOR)
    return Principal(id=str(user["_id"]), role=Role.COLLECTOR)


@pytest.fixture
async def other_collector(mock_db):
    user = await _insert_user(mock_db, Role.COLLECTOR)
    return Principal(id=str(user["_id"]), role=Role.COLLECTOR)


@pytest.fixture
async def resident(mock_db):
    user = await _insert_user(mock_db, Role.RESIDENT)
    return Principal(id=str(user["_id"]), role=Role.RESIDENT)


@pytest.fixture
async def premium_resident(mock_db):
    user = await _insert_user(mock_db, Role.PREMIUM_RESIDENT)
    return Principal(id=str(user["_id"]), role=Role.PREMIUM_RESIDENT, premium_active=True)


@pytest.fixture
def make_bin(mock_db):
    """Insert a bin document directly, bypassing QR generation"""

    async def factory(**overrides) -> dict:
        bin_doc = {
            "bin_code": f"BIN-TEST-{ObjectId()}",
            "scan_token": str(ObjectId()),
            "qr_code": None,
            "location": {
                "name": "Main Street",
                "address": "1 Main Street",
                "coordinates": {"latitude": 6.9271, "longitude": 79.8612},
            },
            "waste_category": "general",
            "capacity_percent": 100,
            "fill_level": 0,
            "status": "empty",
            "collection_frequency_days": 7,
            "last_collected_at": NOW - timedelta(days=1),
            "last_updated": NOW,
            "assigned_collector": None,
            "active": True,
            "maintenance_history": [],
            "stats": {"total_collections": 0, "collected_fill_sum": 0},
            "created_at": NOW,
            "updated_at": NOW,
        }
        bin_doc.update(overrides)
        result = await mock_db.bins.insert_one(bin_doc)
        bin_doc["_id"] = result.inserted_id
        return bin_doc

    return factory
