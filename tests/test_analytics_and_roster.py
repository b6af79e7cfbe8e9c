from __future__ import annotations

from datetime import datetime, timedelta

from app.core.clock import utcnow
from app.models.agent_session import AgentSession
from app.models.rider_credential import RiderCredential
from app.routers.agents import router as agents_router
from app.routers.analytics import resolve_period
from app.routers.analytics import router as analytics_router
from tests.fixtures_data import (
    GLOBEX_API_KEY,
    GLOBEX_COMPANY,
    RIDER_BRUNO,
    build_client,
    build_session,
    company_headers,
    seed_company,
    seed_order,
    seed_pin,
    seed_rider,
    seed_session,
)

NOW = datetime(2024, 5, 15, 14, 30, 0)


def test_resolve_period_windows():
    assert resolve_period("today", NOW) == (datetime(2024, 5, 15), NOW)
    assert resolve_period("yesterday", NOW) == (
        datetime(2024, 5, 14),
        datetime(2024, 5, 14, 23, 59, 59, 999999),
    )
    assert resolve_period("last_7_days", NOW) == (NOW - timedelta(days=7), NOW)
    assert resolve_period("this_month", NOW) == (datetime(2024, 5, 1), NOW)
    assert resolve_period("fortnight", NOW) == resolve_period("today", NOW)


def test_kpis_count_orders_and_revenue_for_the_period():
    db = build_session()
    company = seed_company(db)
    globex = seed_company(db, GLOBEX_COMPANY)
    seed_rider(db, company, status="active")
    seed_order(db, company, status="delivered", total=10)
    seed_order(db, company, status="delivered", total=20)
    seed_order(db, company, status="pending", total=99)
    seed_order(db, company, status="delivered", total=500, created_at=utcnow() - timedelta(days=40))
    seed_order(db, globex, status="delivered", total=1000)
    client = build_client(db, analytics_router)

    response = client.get("/v1/analytics/kpis", params={"period": "last_30_days"}, headers=company_headers())

    data = response.json()["data"]
    assert data["period"] == "last_30_days"
    assert data["total_orders"] == 3
    assert data["delivered_orders"] == 2
    assert data["pending_orders"] == 1
    assert data["revenue"] == 30.0
    assert data["avg_order_value"] == 15.0
    assert data["delivery_rate"] == 66.7
    assert data["active_riders"] == 1
    assert data["total_riders"] == 1


def test_kpis_unknown_period_falls_back_to_today():
    db = build_session()
    seed_company(db)
    client = build_client(db, analytics_router)

    response = client.get("/v1/analytics/kpis", params={"period": "forever"}, headers=company_headers())

    data = response.json()["data"]
    assert data["period"] == "today"
    assert data["total_orders"] == 0
    assert data["delivery_rate"] == 0


def _roster():
    db = build_session()
    company = seed_company(db)
    ana = seed_rider(db, company, status="active", last_seen=utcnow())
    bruno = seed_rider(db, company, RIDER_BRUNO, status="busy", last_seen=utcnow() - timedelta(hours=1))
    seed_rider(db, company, phone="+15550009999", name="No Session", last_seen=utcnow())
    seed_session(db, ana)
    seed_session(db, bruno, token="e" * 64, device_id="device-b")
    client = build_client(db, agents_router)
    return db, company, ana, bruno, client


def test_active_roster_only_lists_recently_seen_riders_with_sessions():
    _db, _company, ana, _bruno, client = _roster()

    response = client.get("/v1/agents/active", headers=company_headers())

    body = response.json()
    assert [agent["id"] for agent in body["data"]] == [ana.id]
    assert body["data"][0]["is_online"] is True
    assert body["data"][0]["session"]["device_type"] == "android"
    assert body["summary"] == {"total": 1, "online": 1, "active": 1, "busy": 0}


def test_roster_with_offline_riders():
    _db, _company, _ana, bruno, client = _roster()

    response = client.get("/v1/agents/active", params={"include_offline": "true"}, headers=company_headers())

    body = response.json()
    assert body["summary"] == {"total": 2, "online": 1, "active": 1, "busy": 1}
    bruno_entry = next(agent for agent in body["data"] if agent["id"] == bruno.id)
    assert bruno_entry["is_online"] is False


def test_roster_is_tenant_scoped():
    db, _company, _ana, _bruno, client = _roster()
    seed_company(db, GLOBEX_COMPANY)

    response = client.get("/v1/agents/active", params={"include_offline": "true"}, headers=company_headers(GLOBEX_API_KEY))

    assert response.json()["data"] == []


def test_set_pin_validates_and_resets_lock():
    db, _company, ana, _bruno, client = _roster()
    credential = seed_pin(db, ana)
    credential.login_attempts = 5
    credential.locked_until = utcnow() + timedelta(minutes=10)
    db.commit()

    bad = client.post(f"/v1/agents/{ana.id}/sessions", json={"pin_code": "12ab"}, headers=company_headers())
    ok = client.post(f"/v1/agents/{ana.id}/sessions", json={"pin_code": "987654"}, headers=company_headers())

    assert bad.status_code == 400
    assert bad.json()["error"] == "PIN must be a 6-digit number"
    assert ok.status_code == 201
    assert ok.json()["message"] == "PIN set for Ana Rider"
    stored = db.query(RiderCredential).filter(RiderCredential.rider_id == ana.id).one()
    assert stored.pin_code == "987654"
    assert stored.login_attempts == 0
    assert stored.locked_until is None


def test_list_and_invalidate_sessions():
    db, _company, ana, _bruno, client = _roster()

    listed = client.get(f"/v1/agents/{ana.id}/sessions", headers=company_headers())
    invalidated = client.delete(f"/v1/agents/{ana.id}/sessions", headers=company_headers())

    assert listed.json()["data"]["rider"]["name"] == "Ana Rider"
    assert listed.json()["data"]["sessions"][0]["device_id"] == "device-a"
    assert invalidated.json()["data"] == {"sessions_invalidated": 1}
    assert db.query(AgentSession).filter(AgentSession.is_active.is_(True)).count() == 1
    db.refresh(ana)
    assert ana.status == "offline"
