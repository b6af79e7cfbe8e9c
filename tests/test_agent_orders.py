from __future__ import annotations

from app.models.agent_activity_log import AgentActivityLog
from app.models.location_history import LocationHistory
from app.routers.agent import router as agent_router
from tests.fixtures_data import (
    agent_headers,
    build_client,
    build_session,
    seed_company,
    seed_order,
    seed_rider,
    seed_session,
)


def _setup():
    db = build_session()
    company = seed_company(db)
    rider = seed_rider(db, company)
    seed_session(db, rider)
    client = build_client(db, agent_router)
    return db, company, rider, client


def test_default_listing_shows_active_orders_only():
    db, company, rider, client = _setup()
    seed_order(db, company, rider=rider, status="assigned")
    seed_order(db, company, rider=rider, status="in_transit")
    seed_order(db, company, rider=rider, status="delivered")

    active = client.get("/agent/orders", headers=agent_headers())
    delivered = client.get("/agent/orders", params={"status": "delivered"}, headers=agent_headers())

    assert sorted(row["status"] for row in active.json()["data"]) == ["assigned", "in_transit"]
    assert [row["status"] for row in delivered.json()["data"]] == ["delivered"]


def test_rider_walks_order_to_delivery():
    db, company, rider, client = _setup()
    order = seed_order(db, company, rider=rider, status="assigned")

    statuses = []
    for status in ("picked_up", "in_transit", "delivered"):
        response = client.patch(f"/agent/orders/{order.id}", json={"status": status}, headers=agent_headers())
        assert response.status_code == 200
        statuses.append(response.json()["data"]["status"])

    assert statuses == ["picked_up", "in_transit", "delivered"]
    assert response.json()["message"] == "Order delivered successfully"
    data = response.json()["data"]
    assert data["picked_up_at"] is not None
    assert data["delivered_at"] is not None
    assert data["payment_status"] == "pending"

    activity = [row.activity_type for row in db.query(AgentActivityLog).order_by(AgentActivityLog.id).all()]
    assert activity == ["order_picked_up", "order_updated", "order_delivered"]


def test_rider_cannot_cancel_or_skip():
    db, company, rider, client = _setup()
    order = seed_order(db, company, rider=rider, status="assigned")

    cancel = client.patch(f"/agent/orders/{order.id}", json={"status": "cancelled"}, headers=agent_headers())
    skip = client.patch(f"/agent/orders/{order.id}", json={"status": "delivered"}, headers=agent_headers())

    assert cancel.status_code == 400
    assert cancel.json()["error"] == "Invalid status. Must be one of: picked_up, in_transit, delivered, failed"
    assert skip.status_code == 400
    assert skip.json()["error"] == "Cannot transition from assigned to delivered"


def test_rider_note_is_appended():
    db, company, rider, client = _setup()
    order = seed_order(db, company, rider=rider, status="assigned", notes="[Dispatcher 2024-01-01T00:00:00]: fragile")

    response = client.patch(f"/agent/orders/{order.id}", json={"notes": "customer not home"}, headers=agent_headers())

    lines = response.json()["data"]["notes"].splitlines()
    assert lines[0] == "[Dispatcher 2024-01-01T00:00:00]: fragile"
    assert lines[1].startswith("[Agent ")
    assert lines[1].endswith("]: customer not home")
    assert response.json()["data"]["status"] == "assigned"


def test_location_update_records_history_and_marks_active():
    db, _company, rider, client = _setup()

    missing = client.post("/agent/location", json={"latitude": 1.0}, headers=agent_headers())
    response = client.post(
        "/agent/location",
        json={"latitude": -23.55, "longitude": -46.63, "battery_level": 80, "speed": 12.5},
        headers=agent_headers(),
    )

    assert missing.status_code == 400
    assert missing.json()["error"] == "Latitude and longitude are required"
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "active"
    assert response.json()["data"]["battery_level"] == 80

    history = db.query(LocationHistory).filter(LocationHistory.rider_id == rider.id).all()
    assert len(history) == 1
    assert history[0].speed == 12.5


def test_profile_status_must_be_known():
    _db, _company, _rider, client = _setup()

    bad = client.patch("/agent/profile", json={"status": "sleeping"}, headers=agent_headers())
    good = client.patch("/agent/profile", json={"status": "busy"}, headers=agent_headers())

    assert bad.status_code == 400
    assert good.status_code == 200
    assert good.json()["data"]["status"] == "busy"
