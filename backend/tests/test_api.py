import pytest

from conftest import P1, add_vendor, pickup_body

pytestmark = pytest.mark.anyio


async def _create(test_client, app, **overrides):
    r = await test_client.post("/api/pickups", json=pickup_body(**overrides))
    assert r.status_code == 201, r.text
    await app.state.coordinator.drain()
    return r.json()["pickup"]["id"]


async def test_health(test_client):
    r = await test_client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


async def test_create_accepts_client_aliases(test_client, app, repo):
    await add_vendor(repo, "v1", km_north=1)
    body = {
        "address": "  44 Taft Ave  ",
        "timeSlot": "15:00-17:00",
        "location": {"latitude": P1["lat"], "longitude": P1["lng"]},
        "items": [
            {"scrapTypeId": "paper", "quantity": 4},
            {"name": "aluminium"},
        ],
    }
    r = await test_client.post("/api/pickups", json=body)
    assert r.status_code == 201, r.text
    created = r.json()["pickup"]
    assert created["address"] == "44 Taft Ave"
    assert created["time_slot"] == "15:00-17:00"
    assert created["items"] == [
        {"scrap_type": "paper", "estimated_quantity": 4.0},
        {"scrap_type": "aluminium", "estimated_quantity": 0.0},
    ]

    await app.state.coordinator.drain()
    r = await test_client.get(f"/api/pickups/{created['id']}")
    got = r.json()["pickup"]
    assert got["status"] == "FINDING_VENDOR"
    assert got["assigned_vendor_ref"] == "v1"
    assert got["latitude"] == P1["lat"]


@pytest.mark.parametrize("override", [
    {"address": "   "},
    {"items": []},
    {"latitude": 95.0},
    {"longitude": None},
])
async def test_create_rejects_bad_input(test_client, repo, override):
    r = await test_client.post("/api/pickups", json=pickup_body(**override))
    assert r.status_code == 400
    assert r.json()["ok"] is False
    assert r.json()["error"]
    assert repo.pickups == {}


async def test_unknown_pickup_is_404(test_client):
    r = await test_client.get("/api/pickups/does-not-exist")
    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": "pickup does-not-exist not found"}


async def test_list_filters_by_status(test_client, app, repo):
    await add_vendor(repo, "v1", km_north=1)
    offered = await _create(test_client, app)
    await test_client.post(f"/api/pickups/{offered}/cancel")
    await _create(test_client, app)

    r = await test_client.get("/api/pickups", params={"status": "CANCELLED"})
    ids = [p["id"] for p in r.json()["pickups"]]
    assert ids == [offered]

    r = await test_client.get("/api/pickups")
    assert len(r.json()["pickups"]) == 2

    r = await test_client.get("/api/pickups", params={"status": "BOGUS"})
    assert r.status_code == 400


async def test_accept_via_vendor_notification(test_client, app, repo):
    await add_vendor(repo, "v1", km_north=1)
    pid = await _create(test_client, app)

    r = await test_client.post("/api/pickups/accepted", json={"pickupId": pid, "assignedVendorRef": "v1"})
    assert r.status_code == 200, r.text
    assert r.json()["pickup"]["status"] == "ASSIGNED"

    r = await test_client.post("/api/vendor/accept", json={"request_id": pid, "vendorId": "v1"})
    assert r.status_code == 409
    assert r.json()["reason"] == "already-decided"


async def test_vendor_callback_requires_ids(test_client):
    r = await test_client.post("/api/vendor/accept", json={"pickupId": "", "vendorRef": "v1"})
    assert r.status_code == 400


async def test_vendor_reject_and_lifecycle(test_client, app, repo, notifier):
    await add_vendor(repo, "v1", km_north=1)
    await add_vendor(repo, "v2", km_north=2)
    pid = await _create(test_client, app)

    r = await test_client.post("/api/vendor/reject", json={"pickup_id": pid, "vendor_ref": "v2"})
    assert r.json()["outcome"] == "ignored"

    r = await test_client.post("/api/vendor/reject", json={"pickup_id": pid, "vendor_ref": "v1"})
    assert r.json()["outcome"] == "redispatched"
    assert r.json()["pickup"]["assigned_vendor_ref"] == "v2"

    for path in ("accept", "on-the-way", "pickup-done"):
        r = await test_client.post(f"/api/vendor/{path}", json={"pickupId": pid, "vendorRef": "v2"})
        assert r.status_code == 200, r.text

    got = (await test_client.get(f"/api/pickups/{pid}")).json()["pickup"]
    assert got["status"] == "COMPLETED"
    assert got["completed_at"] is not None
    assert notifier.refs == ["v1", "v2"]


async def test_cancel_then_retry_conflicts(test_client, app, repo):
    await add_vendor(repo, "v1", km_north=1)
    pid = await _create(test_client, app)

    r = await test_client.post(f"/api/pickups/{pid}/cancel")
    assert r.status_code == 200
    assert r.json()["pickup"]["status"] == "CANCELLED"

    r = await test_client.post(f"/api/pickups/{pid}/cancel")
    assert r.status_code == 409

    r = await test_client.post(f"/api/pickups/{pid}/find-vendor")
    assert r.status_code == 409
    assert r.json()["ok"] is False


async def test_find_vendor_after_exhaustion(test_client, app, repo):
    pid = await _create(test_client, app)
    assert (await test_client.get(f"/api/pickups/{pid}")).json()["pickup"]["status"] == "NO_VENDOR_AVAILABLE"

    await add_vendor(repo, "v1", km_north=1)
    r = await test_client.post(f"/api/pickups/{pid}/find-vendor")
    assert r.status_code == 200
    await app.state.coordinator.drain()

    got = (await test_client.get(f"/api/pickups/{pid}")).json()["pickup"]
    assert got["assigned_vendor_ref"] == "v1"


async def test_vendor_location_registers_candidate(test_client, app):
    r = await test_client.post("/api/vendor/location", json={
        "vendorId": "v7",
        "latitude": P1["lat"],
        "longitude": P1["lng"],
        "offerUrl": "http://v7.test/offers",
    })
    assert r.status_code == 200, r.text
    assert r.json()["vendor"]["is_available"] is True

    pid = await _create(test_client, app)
    got = (await test_client.get(f"/api/pickups/{pid}")).json()["pickup"]
    assert got["assigned_vendor_ref"] == "v7"
