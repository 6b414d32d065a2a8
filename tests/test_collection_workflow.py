import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from smartwaste.errors import Forbidden, InvalidInput, InvalidState, NotFound, Unavailable
from smartwaste.models.enums import BinStatus, CollectionKind, CollectionStatus, Role
from smartwaste.services.capabilities import Principal
from smartwaste.services.collection_workflow import CollectionWorkflow

from conftest import NOW


@pytest.fixture
def workflow(mock_db, clock):
    return CollectionWorkflow(mock_db, clock=clock, use_transactions=False)


@pytest.fixture
async def assigned_bin(make_bin, collector):
    return await make_bin(fill_level=85, status="full", assigned_collector=ObjectId(collector.id))


async def test_request_copies_collector_and_notifies(workflow, assigned_bin, resident, collector):
    outcome = await workflow.create_request(resident, assigned_bin["_id"], description="Overflowing since Monday")
    collection = outcome.result

    assert collection["collector"] == ObjectId(collector.id)
    assert collection["resident"] == ObjectId(resident.id)
    assert collection["kind"] == CollectionKind.REQUESTED.value
    assert collection["status"] == CollectionStatus.ASSIGNED.value
    assert collection["scheduled_at"] == NOW
    assert collection["payment"] is None

    [event] = outcome.events
    assert event.name == "newCollectionRequest"
    assert event.room == f"collector-{collector.id}"
    assert event.payload["binName"] == "Main Street"
    assert event.payload["collectionId"] == str(collection["_id"])


async def test_request_without_collector_has_no_event(workflow, make_bin, resident):
    bin_doc = await make_bin()
    outcome = await workflow.create_request(resident, bin_doc["_id"])
    assert outcome.result["collector"] is None
    assert outcome.events == []


async def test_request_validation(workflow, assigned_bin, resident):
    with pytest.raises(InvalidInput):
        await workflow.create_request(resident, assigned_bin["_id"], kind="express")
    with pytest.raises(NotFound):
        await workflow.create_request(resident, ObjectId())


async def test_bulk_requires_active_premium(workflow, assigned_bin, resident, premium_resident):
    with pytest.raises(Forbidden):
        await workflow.create_request(resident, assigned_bin["_id"], kind="bulk")

    lapsed = Principal(premium_resident.id, Role.PREMIUM_RESIDENT, premium_active=False)
    with pytest.raises(Forbidden):
        await workflow.create_request(lapsed, assigned_bin["_id"], kind="bulk")

    outcome = await workflow.create_request(
        premium_resident, assigned_bin["_id"], kind="bulk",
        composition={"general": {"weight": 10}, "hazardous": {"weight": 1}},
    )
    assert outcome.result["payment"] == {
        "amount": 57.0,
        "status": "pending",
        "transaction_id": None,
        "method": None,
    }


async def test_request_against_route_must_contain_bin(workflow, mock_db, assigned_bin, make_bin, resident, collector):
    other_bin = await make_bin()
    route_id = (await mock_db.routes.insert_one({
        "name": "North loop",
        "collector": ObjectId(collector.id),
        "bins": [{"bin": other_bin["_id"], "order": 1}],
        "completed_bins": [],
        "status": "active",
    })).inserted_id

    with pytest.raises(InvalidInput):
        await workflow.create_request(resident, assigned_bin["_id"], route_id=route_id)
    with pytest.raises(NotFound):
        await workflow.create_request(resident, assigned_bin["_id"], route_id=ObjectId())

    outcome = await workflow.create_request(resident, other_bin["_id"], route_id=route_id)
    assert outcome.result["route"] == route_id


async def test_only_assigned_collector_advances(workflow, assigned_bin, resident, other_collector):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result
    with pytest.raises(Forbidden):
        await workflow.advance_status(other_collector, collection["_id"], "in_progress")


async def test_start_then_complete(workflow, mock_db, assigned_bin, resident, collector, clock):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result

    started = await workflow.advance_status(collector, collection["_id"], "in_progress", {"notes": "On the way"})
    assert started.result["status"] == CollectionStatus.IN_PROGRESS.value
    assert started.result["notes"] == "On the way"
    assert [event.name for event in started.events] == ["collectionUpdated"]

    clock.advance(minutes=30)
    completed = await workflow.advance_status(collector, collection["_id"], "completed", {
        "waste_composition": {"general": {"weight": 12, "volume": 0.4}},
    })
    result = completed.result
    assert result["status"] == CollectionStatus.COMPLETED.value
    assert result["completed_at"] == clock.now
    assert result["fill_level_before"] == 85
    assert result["fill_level_after"] == 0
    assert [event.name for event in completed.events] == ["collectionUpdated", "binUpdated"]
    assert completed.events[1].payload == {"binId": str(assigned_bin["_id"]), "fillLevel": 0, "status": "empty"}

    bin_doc = await mock_db.bins.find_one({"_id": assigned_bin["_id"]})
    assert bin_doc["fill_level"] == 0
    assert bin_doc["status"] == BinStatus.EMPTY.value
    assert bin_doc["last_collected_at"] == clock.now
    assert bin_doc["stats"] == {"total_collections": 1, "collected_fill_sum": 85}

    user = await mock_db.users.find_one({"_id": ObjectId(collector.id)})
    assert user["stats"]["total_collections"] == 1


async def test_completion_with_remaining_fill(workflow, mock_db, assigned_bin, resident, collector):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result
    await workflow.advance_status(collector, collection["_id"], "completed", {"fill_level_after": 30})

    bin_doc = await mock_db.bins.find_one({"_id": assigned_bin["_id"]})
    assert bin_doc["fill_level"] == 30
    assert bin_doc["status"] == BinStatus.PARTIAL.value


async def test_completion_keeps_maintenance_status(workflow, mock_db, make_bin, resident, collector):
    bin_doc = await make_bin(fill_level=50, status="maintenance", assigned_collector=ObjectId(collector.id))
    collection = (await workflow.create_request(resident, bin_doc["_id"])).result
    await workflow.advance_status(collector, collection["_id"], "completed")

    stored = await mock_db.bins.find_one({"_id": bin_doc["_id"]})
    assert stored["fill_level"] == 0
    assert stored["status"] == BinStatus.MAINTENANCE.value


async def test_completion_happens_once(workflow, mock_db, assigned_bin, resident, collector):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result
    await workflow.advance_status(collector, collection["_id"], "completed")

    with pytest.raises(InvalidState):
        await workflow.advance_status(collector, collection["_id"], "completed")
    with pytest.raises(InvalidState):
        await workflow.advance_status(collector, collection["_id"], "in_progress")

    bin_doc = await mock_db.bins.find_one({"_id": assigned_bin["_id"]})
    assert bin_doc["stats"]["total_collections"] == 1


async def test_invalid_status_input(workflow, assigned_bin, resident, collector):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result
    with pytest.raises(InvalidInput):
        await workflow.advance_status(collector, collection["_id"], "teleported")
    with pytest.raises(InvalidInput):
        await workflow.advance_status(collector, collection["_id"], "completed", {"fill_level_after": 150})


async def test_concurrent_completions_keep_counters_exact(workflow, mock_db, assigned_bin, resident, collector):
    ids = []
    for _ in range(3):
        ids.append((await workflow.create_request(resident, assigned_bin["_id"])).result["_id"])

    await asyncio.gather(*(workflow.advance_status(collector, cid, "completed") for cid in ids))

    bin_doc = await mock_db.bins.find_one({"_id": assigned_bin["_id"]})
    assert bin_doc["stats"]["total_collections"] == 3
    user = await mock_db.users.find_one({"_id": ObjectId(collector.id)})
    assert user["stats"]["total_collections"] == 3


async def test_route_progress_recorded_once_per_bin(workflow, mock_db, assigned_bin, resident, collector):
    route_id = (await mock_db.routes.insert_one({
        "name": "Harbour loop",
        "collector": ObjectId(collector.id),
        "bins": [{"bin": assigned_bin["_id"], "order": 1}],
        "completed_bins": [],
        "status": "in_progress",
        "stats": {"total_collections": 0},
    })).inserted_id

    for _ in range(2):
        collection = (await workflow.create_request(resident, assigned_bin["_id"], route_id=route_id)).result
        await workflow.advance_status(collector, collection["_id"], "completed")

    route = await mock_db.routes.find_one({"_id": route_id})
    assert route["completed_bins"] == [assigned_bin["_id"]]
    assert route["stats"]["total_collections"] == 2


class FailingUsers:
    async def update_one(self, *args, **kwargs):
        raise PyMongoError("connection reset")


class FlakyDatabase:
    """Store whose users collection rejects writes"""

    def __init__(self, db):
        self._db = db
        self.users = FailingUsers()

    def __getattr__(self, name):
        return getattr(self._db, name)


async def test_failed_completion_is_rolled_back(mock_db, clock, assigned_bin, resident, collector):
    collection = (await CollectionWorkflow(mock_db, clock=clock).create_request(resident, assigned_bin["_id"])).result
    flaky = CollectionWorkflow(FlakyDatabase(mock_db), clock=clock, use_transactions=False)

    with pytest.raises(Unavailable):
        await flaky.advance_status(collector, collection["_id"], "completed")

    stored = await mock_db.collections.find_one({"_id": collection["_id"]})
    assert stored["status"] == CollectionStatus.ASSIGNED.value
    assert stored["completed_at"] is None

    bin_doc = await mock_db.bins.find_one({"_id": assigned_bin["_id"]})
    assert bin_doc["fill_level"] == 85
    assert bin_doc["status"] == BinStatus.FULL.value
    assert bin_doc["stats"]["total_collections"] == 0
    assert bin_doc["stats"]["collected_fill_sum"] == 0


WRITES = {"insert_one", "update_one", "find_one_and_update", "delete_one", "delete_many"}
SNAPSHOT = ("bins", "users", "routes", "collections")


class RecordingSession:
    """Session double that snapshots the store and restores it on abort"""

    def __init__(self, store):
        self.store = store
        self.transactions = 0
        self.committed = False
        self.aborted = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @asynccontextmanager
    async def start_transaction(self):
        self.transactions += 1
        snapshot = {name: await getattr(self.store.db, name).find().to_list(None) for name in SNAPSHOT}
        self.store.session = self
        try:
            yield
        except BaseException:
            for name, docs in snapshot.items():
                await getattr(self.store.db, name).delete_many({})
                if docs:
                    await getattr(self.store.db, name).insert_many(docs)
            self.aborted = True
            raise
        finally:
            self.store.session = None
        self.committed = True


class RecordingClient:
    def __init__(self, store):
        self.store = store
        self.sessions = []

    async def start_session(self):
        session = RecordingSession(self.store)
        self.sessions.append(session)
        return session


class RecordingCollection:
    def __init__(self, store, name):
        self._store = store
        self._name = name

    def __getattr__(self, method):
        target = getattr(getattr(self._store.db, self._name), method)

        def call(*args, session=None, **kwargs):
            in_transaction = self._store.session is not None
            self._store.calls.append((self._name, method, session, in_transaction))
            if (self._name, method) == self._store.fail_on:
                raise PyMongoError("transaction aborted")
            return target(*args, **kwargs)
        return call


class TransactionalDatabase:
    """Store with a session-aware client; records which session every call carries"""

    def __init__(self, db, fail_on=None):
        self.db = db
        self.fail_on = fail_on
        self.calls = []
        self.session = None
        self.client = RecordingClient(self)

    def __getattr__(self, name):
        return RecordingCollection(self, name)


@pytest.fixture
async def routed_collection(mock_db, clock, assigned_bin, resident, collector):
    route_id = (await mock_db.routes.insert_one({
        "name": "Harbour loop",
        "collector": ObjectId(collector.id),
        "bins": [{"bin": assigned_bin["_id"], "order": 1}],
        "completed_bins": [],
        "status": "in_progress",
        "stats": {"total_collections": 0},
    })).inserted_id
    workflow = CollectionWorkflow(mock_db, clock=clock, use_transactions=False)
    return (await workflow.create_request(resident, assigned_bin["_id"], route_id=route_id)).result


async def test_transactional_completion_writes_through_one_session(mock_db, clock, routed_collection, collector):
    store = TransactionalDatabase(mock_db)
    workflow = CollectionWorkflow(store, clock=clock, use_transactions=True)

    outcome = await workflow.advance_status(collector, routed_collection["_id"], "completed")
    assert outcome.result["status"] == CollectionStatus.COMPLETED.value
    assert outcome.result["fill_level_before"] == 85

    [session] = store.client.sessions
    assert session.transactions == 1
    assert session.committed and not session.aborted

    inside = [(name, method, used) for name, method, used, in_transaction in store.calls if in_transaction]
    writes = [(name, method) for name, method, _ in inside if method in WRITES]
    assert sorted(writes) == sorted([
        ("collections", "find_one_and_update"),
        ("bins", "update_one"),
        ("users", "update_one"),
        ("routes", "update_one"),
        ("routes", "update_one"),
        ("collections", "find_one_and_update"),
    ])
    assert all(used is session for _, _, used in inside)

    route = await mock_db.routes.find_one({"_id": routed_collection["route"]})
    assert route["completed_bins"] == [routed_collection["bin"]]
    assert route["stats"]["total_collections"] == 1


async def test_aborted_transaction_leaves_documents_untouched(mock_db, clock, routed_collection, collector):
    store = TransactionalDatabase(mock_db, fail_on=("routes", "update_one"))
    workflow = CollectionWorkflow(store, clock=clock, use_transactions=True)

    with pytest.raises(Unavailable):
        await workflow.advance_status(collector, routed_collection["_id"], "completed")

    [session] = store.client.sessions
    assert session.aborted and not session.committed

    stored = await mock_db.collections.find_one({"_id": routed_collection["_id"]})
    assert stored["status"] == CollectionStatus.ASSIGNED.value
    assert stored["completed_at"] is None

    bin_doc = await mock_db.bins.find_one({"_id": routed_collection["bin"]})
    assert bin_doc["fill_level"] == 85
    assert bin_doc["status"] == BinStatus.FULL.value
    assert bin_doc["stats"] == {"total_collections": 0, "collected_fill_sum": 0}

    user = await mock_db.users.find_one({"_id": ObjectId(collector.id)})
    assert user["stats"] == {}

    route = await mock_db.routes.find_one({"_id": routed_collection["route"]})
    assert route["completed_bins"] == []
    assert route["stats"]["total_collections"] == 0


async def test_visibility(workflow, assigned_bin, resident, collector, other_collector, admin, make_user):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result

    for principal in (resident, collector, admin):
        found = await workflow.get_collection(principal, collection["_id"])
        assert found["_id"] == collection["_id"]
    with pytest.raises(Forbidden):
        await workflow.get_collection(other_collector, collection["_id"])

    mine, total = await workflow.list_collections(resident)
    assert total == 1
    theirs, total = await workflow.list_collections(other_collector)
    assert total == 0


async def test_rating(workflow, mock_db, assigned_bin, resident, collector, premium_resident):
    collection = (await workflow.create_request(resident, assigned_bin["_id"])).result

    with pytest.raises(InvalidState):
        await workflow.rate(resident, collection["_id"], 4)

    await workflow.advance_status(collector, collection["_id"], "completed")

    with pytest.raises(Forbidden):
        await workflow.rate(premium_resident, collection["_id"], 4)
    with pytest.raises(InvalidInput):
        await workflow.rate(resident, collection["_id"], 6)

    rated = await workflow.rate(resident, collection["_id"], 4, "Quick and tidy")
    assert rated["rating"] == 4
    assert rated["feedback"] == "Quick and tidy"

    # A second rating replaces the first
    await workflow.rate(resident, collection["_id"], 2)
    user = await mock_db.users.find_one({"_id": ObjectId(collector.id)})
    assert user["stats"]["average_rating"] == 2.0
    assert user["stats"]["rated_collections"] == 1


async def test_collector_rating_is_mean_of_rated_collections(workflow, mock_db, assigned_bin, resident, collector):
    ids = []
    for _ in range(3):
        cid = (await workflow.create_request(resident, assigned_bin["_id"])).result["_id"]
        await workflow.advance_status(collector, cid, "completed")
        ids.append(cid)

    await workflow.rate(resident, ids[0], 5)
    await workflow.rate(resident, ids[1], 3)

    user = await mock_db.users.find_one({"_id": ObjectId(collector.id)})
    assert user["stats"]["average_rating"] == 4.0
    assert user["stats"]["rated_collections"] == 2


async def test_schedule_for_route(workflow, mock_db, make_bin, collector):
    first, second = await make_bin(), await make_bin()
    route = {
        "_id": ObjectId(),
        "collector": ObjectId(collector.id),
        "bins": [{"bin": first["_id"], "order": 1}, {"bin": second["_id"], "order": 2}],
        "scheduled_at": NOW + timedelta(days=1),
    }

    scheduled = await workflow.schedule_for_route(route)

    assert len(scheduled) == 2
    assert {c["bin"] for c in scheduled} == {first["_id"], second["_id"]}
    assert all(c["kind"] == "scheduled" and c["route"] == route["_id"] for c in scheduled)
    assert await mock_db.collections.count_documents({"route": route["_id"]}) == 2
