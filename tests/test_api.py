import httpx
import pytest
from bson import ObjectId

from smartwaste.api import deps
from smartwaste.database import db as database_holder
from smartwaste.main import app
from smartwaste.services.capabilities import Principal


def headers(principal: Principal) -> dict:
    return {
        "X-User-Id": principal.id,
        "X-User-Role": principal.role.value,
        "X-Premium-Active": "true" if principal.premium_active else "false",
    }


@pytest.fixture
async def client(mock_db):
    database_holder.database = mock_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    database_holder.database = None


BIN_BODY = {
    "location": {
        "name": "Station Road",
        "address": "4 Station Road",
        "coordinates": {"latitude": 6.9271, "longitude": 79.8612},
    },
    "waste_category": "general",
}


async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "connected"


@pytest.mark.parametrize("bad_headers", [
    {},
    {"X-User-Id": str(ObjectId())},
    {"X-User-Id": str(ObjectId()), "X-User-Role": "mayor"},
    {"X-User-Id": "someone", "X-User-Role": "admin"},
])
async def test_identity_is_required(client, bad_headers):
    response = await client.get("/api/bins", headers=bad_headers)
    assert response.status_code == 401


async def test_create_and_read_bin(client, admin):
    response = await client.post("/api/bins", json=BIN_BODY, headers=headers(admin))
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "empty"
    assert created["needs_collection"] is True
    assert created["stats"] == {"total_collections": 0, "average_fill_level": 0}
    assert created["qr_code"].startswith("data:image/png;base64,")

    response = await client.get(f"/api/bins/{created['id']}", headers=headers(admin))
    assert response.status_code == 200
    assert response.json()["bin_code"] == created["bin_code"]

    response = await client.get(f"/api/bins/scan/{created['scan_token']}", headers=headers(admin))
    assert response.json()["id"] == created["id"]


async def test_errors_map_to_distinct_responses(client, resident, make_bin):
    response = await client.post("/api/bins", json=BIN_BODY, headers=headers(resident))
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"

    response = await client.get("/api/bins/not-a-bin", headers=headers(resident))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    bin_doc = await make_bin()
    response = await client.put(f"/api/bins/{bin_doc['_id']}/fill", json={"fill_level": 0}, headers=headers(resident))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


async def test_fill_level_endpoint(client, resident, make_bin):
    bin_doc = await make_bin(fill_level=20, status="empty")
    response = await client.put(f"/api/bins/{bin_doc['_id']}/fill", json={"fill_level": 10}, headers=headers(resident))
    assert response.status_code == 200
    assert response.json()["fill_level"] == 30
    assert response.json()["status"] == "partial"


async def test_nearby_endpoint(client, resident, make_bin):
    near = await make_bin()
    await make_bin(location={"name": "Far", "coordinates": {"latitude": 7.5, "longitude": 80.5}})

    response = await client.get(
        "/api/bins/nearby",
        params={"latitude": 6.9271, "longitude": 79.8612, "radius": 2},
        headers=headers(resident),
    )
    assert response.status_code == 200
    body = response.json()
    assert [b["id"] for b in body["bins"]] == [str(near["_id"])]
    assert body["bins"][0]["distance"] == 0
    assert body["radius"] == 2


async def test_collection_lifecycle(client, make_bin, resident, collector):
    bin_doc = await make_bin(fill_level=85, status="full", assigned_collector=ObjectId(collector.id))

    response = await client.post("/api/collections", json={"bin_id": str(bin_doc["_id"])}, headers=headers(resident))
    assert response.status_code == 201
    collection = response.json()
    assert collection["collector"] == collector.id
    assert collection["status"] == "assigned"

    response = await client.put(
        f"/api/collections/{collection['id']}/status",
        json={"status": "completed", "waste_composition": {"general": {"weight": 7.5, "volume": 1}}},
        headers=headers(collector),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["total_weight"] == 7.5
    assert response.json()["fill_level_before"] == 85

    response = await client.put(
        f"/api/collections/{collection['id']}/status",
        json={"status": "completed"},
        headers=headers(collector),
    )
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state"

    response = await client.put(
        f"/api/collections/{collection['id']}/rate",
        json={"rating": 5, "feedback": "Great"},
        headers=headers(resident),
    )
    assert response.status_code == 200
    assert response.json()["rating"] == 5

    response = await client.get(f"/api/bins/{bin_doc['_id']}", headers=headers(resident))
    assert response.json()["fill_level"] == 0
    assert response.json()["stats"] == {"total_collections": 1, "average_fill_level": 85}


async def test_bulk_request_needs_premium(client, make_bin, resident, premium_resident):
    bin_doc = await make_bin()
    body = {"bin_id": str(bin_doc["_id"]), "kind": "bulk", "waste_composition": {"general": {"weight": 4}}}

    response = await client.post("/api/collections", json=body, headers=headers(resident))
    assert response.status_code == 403

    response = await client.post("/api/collections", json=body, headers=headers(premium_resident))
    assert response.status_code == 201
    assert response.json()["payment"]["amount"] == 52.0
    assert response.json()["payment"]["status"] == "pending"


async def test_route_endpoints(client, make_bin, admin, collector, resident):
    first, second = await make_bin(), await make_bin()
    body = {
        "name": "Harbour loop",
        "collector": collector.id,
        "bins": [
            {"bin": str(first["_id"]), "estimated_minutes": 5},
            {"bin": str(second["_id"]), "estimated_minutes": 7},
        ],
        "scheduled_at": "2030-01-01T08:00:00Z",
    }

    response = await client.post("/api/routes", json=body, headers=headers(admin))
    assert response.status_code == 201
    route = response.json()
    assert route["status"] == "active"
    assert route["estimated_duration_min"] == 12
    assert route["progress"] == 0
    assert len(route["remaining_bins"]) == 2
    assert route["is_overdue"] is False

    response = await client.put(f"/api/routes/{route['id']}/start", headers=headers(collector))
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"

    response = await client.put(f"/api/routes/{route['id']}/start", headers=headers(collector))
    assert response.status_code == 409

    response = await client.get("/api/routes", headers=headers(resident))
    assert response.status_code == 403

    response = await client.get("/api/routes", headers=headers(collector))
    assert response.json()["pagination"] == {"current": 1, "pages": 1, "total": 1}


async def test_payment_endpoints(client, resident, admin):
    response = await client.post(
        "/api/payments",
        json={"type": "subscription", "amount": 10, "payment_method": "card", "tax_amount": 1},
        headers=headers(resident),
    )
    assert response.status_code == 201
    payment = response.json()
    assert payment["net_amount"] == 11.0
    assert payment["is_refundable"] is False

    response = await client.put(
        f"/api/payments/{payment['id']}/status",
        json={"status": "completed", "transaction_id": "txn_1"},
        headers=headers(admin),
    )
    assert response.json()["status"] == "completed"
    assert response.json()["is_refundable"] is True

    response = await client.get("/api/payments", headers=headers(resident))
    assert response.json()["pagination"]["total"] == 1


async def test_statistics_endpoints(client, admin, resident):
    response = await client.get("/api/stats/dashboard", headers=headers(admin))
    assert response.status_code == 200
    assert "overview" in response.json()

    response = await client.get("/api/stats/dashboard", headers=headers(resident))
    assert response.status_code == 403

    response = await client.get("/api/stats/collections", params={"period": 7}, headers=headers(admin))
    assert response.status_code == 200
    assert response.json()["total_collections"] == 0

    response = await client.get(
        "/api/stats/collections", params={"start": "2024-01-01T00:00:00"}, headers=headers(admin)
    )
    assert response.status_code == 400

    response = await client.get("/api/stats/payments", headers=headers(resident))
    assert response.status_code == 200
    assert response.json()["summary"]["count"] == 0


async def test_alerts_endpoint(client, admin):
    response = await client.get("/api/health/alerts", headers=headers(admin))
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "alerts": []}


async def test_unavailable_store(client, admin):
    database_holder.database = None
    response = await client.get("/api/bins", headers=headers(admin))
    assert response.status_code == 503
    assert response.json()["error"] == "unavailable"


@pytest.fixture
def dispatched(monkeypatch):
    sent = []

    class RecordingDispatcher:
        async def dispatch(self, events):
            sent.extend(events)
            return len(sent)

    monkeypatch.setattr(deps, "get_dispatcher", lambda: RecordingDispatcher())
    return sent


async def test_admin_broadcast(client, admin, resident, dispatched):
    body = {"title": "Holiday schedule", "message": "No pickups on Monday", "type": "warning"}

    response = await client.post("/api/admin/notifications", json=body, headers=headers(resident))
    assert response.status_code == 403
    assert dispatched == []

    response = await client.post("/api/admin/notifications", json=body, headers=headers(admin))
    assert response.status_code == 200
    assert response.json()["notification"]["type"] == "warning"

    [event] = dispatched
    assert event.name == "adminNotification"
    assert event.room == "all"
    assert event.payload["title"] == "Holiday schedule"
    assert event.payload["message"] == "No pickups on Monday"


async def test_malformed_bodies_are_invalid_input(client, admin):
    response = await client.post(
        "/api/admin/notifications", json={"title": "", "message": "x", "type": "shout"}, headers=headers(admin)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"

    response = await client.post("/api/bins", json={**BIN_BODY, "capacity_percent": 150}, headers=headers(admin))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"
    assert "capacity_percent" in response.json()["detail"]

    response = await client.get("/api/stats/collections", params={"period": 0}, headers=headers(admin))
    assert response.status_code == 400


async def test_payer_cannot_settle_or_refund_pending_payment(client, resident):
    response = await client.post(
        "/api/payments",
        json={"type": "subscription", "amount": 10, "payment_method": "card"},
        headers=headers(resident),
    )
    payment_id = response.json()["id"]

    response = await client.put(f"/api/payments/{payment_id}/status", json={"status": "completed"}, headers=headers(resident))
    assert response.status_code == 403

    response = await client.put(f"/api/payments/{payment_id}/status", json={"status": "refunded"}, headers=headers(resident))
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state"
