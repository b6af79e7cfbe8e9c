from __future__ import annotations

from unittest.mock import patch

import httpx

from app.fsm.orders import Actor, OrderStatus, append_note, apply_status
from app.models.customer import Customer
from app.models.external_integration import ExternalIntegration
from app.models.integration_sync_log import IntegrationSyncLog
from app.models.order import Order
from app.models.rider import Rider
from app.routers.integrations import router as integrations_router
from app.services.credentials import MASK
from app.services.integration_sync import build_auth_headers, map_external_order_status, run_sync
from tests.fixtures_data import GLOBEX_API_KEY, GLOBEX_COMPANY, build_client, build_session, company_headers, seed_company

STORE_URL = "https://shop.acme.test"

RIDERS = [
    {"id": 11, "name": "Dana Driver", "phone": "+15551110000", "status": "active"},
    {"id": 12, "phone": "+15551110001"},
]
ORDERS = {
    "orders": [
        {
            "id": "A-100",
            "status": "shipped",
            "customer_name": "Quinn",
            "customer_phone": "+15552220000",
            "delivery_address": "8 Harbor Rd",
            "total": "19.90",
        }
    ]
}
CUSTOMERS = [{"id": 501, "first_name": "Quinn", "last_name": "Lee", "billing": {"phone": "+15552220000"}}]


def _store_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/customers") and request.url.params.get("role") == "driver":
        return httpx.Response(200, json=RIDERS)
    if request.url.path.endswith("/orders"):
        return httpx.Response(200, json=ORDERS)
    if request.url.path.endswith("/customers"):
        return httpx.Response(500)
    return httpx.Response(404)


def _integration(db, company, **overrides) -> ExternalIntegration:
    values = {
        "company_id": company.id,
        "integration_type": "woocommerce",
        "name": "Acme Store",
        "api_url": STORE_URL,
        "api_key": "ck_live_123456",
        "api_secret": "cs_live_abcdef",
        "riders_endpoint": "/wp-json/wc/v3/customers?role=driver",
        "orders_endpoint": "/wp-json/wc/v3/orders",
        "customers_endpoint": "/wp-json/wc/v3/customers",
        "is_active": True,
        "sync_riders": True,
        "sync_orders": True,
        "sync_customers": True,
        "total_riders_synced": 0,
        "total_orders_synced": 0,
        "total_customers_synced": 0,
    }
    values.update(overrides)
    integration = ExternalIntegration(**values)
    db.add(integration)
    db.commit()
    db.refresh(integration)
    return integration


def test_create_masks_credentials_and_returns_secret_once():
    db = build_session()
    seed_company(db)
    client = build_client(db, integrations_router)

    created = client.post(
        "/v1/settings/integrations",
        json={
            "integration_type": "woocommerce",
            "name": "Acme Store",
            "api_url": STORE_URL + "/",
            "api_key": "ck_live_123456",
            "api_secret": "cs_live_abcdef",
        },
        headers=company_headers(),
    )

    body = created.json()
    integration = body["integration"]
    assert body["message"] == "Integration created successfully"
    assert body["webhook_secret"].startswith("whsec_")
    assert body["webhook_url"].endswith("/webhooks/woocommerce")
    assert integration["api_url"] == STORE_URL
    assert integration["api_key"] == MASK + "3456"
    assert integration["api_secret"] == MASK
    assert integration["webhook_secret"] == MASK + body["webhook_secret"][-4:]
    assert integration["orders_endpoint"] == "/wp-json/wc/v3/orders"

    listed = client.get("/v1/settings/integrations", headers=company_headers()).json()["integrations"]
    assert listed[0]["api_key"] == MASK + "3456"


def test_create_validates_fields():
    db = build_session()
    seed_company(db)
    client = build_client(db, integrations_router)

    missing = client.post("/v1/settings/integrations", json={"name": "x"}, headers=company_headers())
    bad_type = client.post(
        "/v1/settings/integrations",
        json={"integration_type": "magento", "name": "x", "api_url": STORE_URL},
        headers=company_headers(),
    )

    assert missing.json()["error"] == "integration_type, name, and api_url are required"
    assert bad_type.json()["error"] == "integration_type must be one of: woocommerce, shopify, wordpress, custom"


def test_update_delete_and_tenant_scope():
    db = build_session()
    acme = seed_company(db)
    seed_company(db, GLOBEX_COMPANY)
    integration = _integration(db, acme)
    client = build_client(db, integrations_router)
    path = f"/v1/settings/integrations/{integration.id}"

    foreign = client.get(path, headers=company_headers(GLOBEX_API_KEY))
    empty_url = client.put(path, json={"api_url": ""}, headers=company_headers())
    updated = client.put(path, json={"name": "Renamed", "sync_customers": False}, headers=company_headers())
    deleted = client.delete(path, headers=company_headers())

    assert foreign.status_code == 404
    assert foreign.json()["error"] == "Integration not found"
    assert empty_url.status_code == 400
    assert updated.json()["integration"]["name"] == "Renamed"
    assert updated.json()["integration"]["sync_customers"] is False
    assert deleted.json()["message"] == "Integration deleted successfully"
    assert db.query(ExternalIntegration).count() == 0


def test_run_sync_upserts_and_reports_partial_failure():
    db = build_session()
    acme = seed_company(db)
    integration = _integration(db, acme)

    with httpx.Client(transport=httpx.MockTransport(_store_handler)) as http:
        report = run_sync(db, integration, client=http)

    assert report.status == "partial"
    assert report.results()["riders"] == {"fetched": 2, "created": 1, "updated": 0, "failed": 1}
    assert report.results()["orders"] == {"fetched": 1, "created": 1, "updated": 0, "failed": 0}
    assert report.errors == ["Customers sync failed: 500 Internal Server Error"]

    rider = db.query(Rider).filter(Rider.company_id == acme.id).one()
    assert rider.external_id == "11"
    order = db.query(Order).filter(Order.external_id == "A-100").one()
    assert order.status == "in_transit"
    assert order.source == "woocommerce"
    assert order.pickup_address == "Acme Store"
    assert db.query(Customer).filter(Customer.phone == "+15552220000").count() == 1

    db.refresh(integration)
    assert integration.last_sync_status == "partial"
    assert integration.total_orders_synced == 1
    log = db.query(IntegrationSyncLog).one()
    assert (log.records_fetched, log.records_created, log.records_failed) == (3, 2, 1)


def test_second_sync_updates_instead_of_duplicating():
    db = build_session()
    acme = seed_company(db)
    integration = _integration(db, acme, sync_customers=False)

    with httpx.Client(transport=httpx.MockTransport(_store_handler)) as http:
        run_sync(db, integration, client=http)
        report = run_sync(db, integration, client=http)

    assert report.status == "success"
    assert report.results()["orders"]["updated"] == 1
    assert db.query(Order).count() == 1


def test_sync_endpoint_uses_store_credentials():
    db = build_session()
    acme = seed_company(db)
    integration = _integration(db, acme, sync_riders=False, sync_customers=False)
    client = build_client(db, integrations_router)
    seen = []
    real_client = httpx.Client

    def handler(request):
        seen.append(request)
        return _store_handler(request)

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    with patch("app.services.integration_sync.httpx.Client", new=factory):
        response = client.post(f"/v1/settings/integrations/{integration.id}/sync", headers=company_headers())

    body = response.json()
    assert body["status"] == "success"
    assert body["message"].startswith("Sync completed in ")
    assert body["results"]["orders"]["created"] == 1
    assert seen[0].headers["Authorization"].startswith("Basic ")


def test_inactive_integration_refuses_sync():
    db = build_session()
    acme = seed_company(db)
    integration = _integration(db, acme, is_active=False)
    client = build_client(db, integrations_router)

    response = client.post(f"/v1/settings/integrations/{integration.id}/sync", headers=company_headers())

    assert response.status_code == 400
    assert response.json()["error"] == "Integration is not active"


def test_auth_headers_and_status_mapping():
    shopify = ExternalIntegration(integration_type="shopify", api_key="shpat_1")
    custom = ExternalIntegration(integration_type="custom", api_key="tok")
    keyless = ExternalIntegration(integration_type="custom", api_key=None)

    assert build_auth_headers(shopify)["X-Shopify-Access-Token"] == "shpat_1"
    assert build_auth_headers(custom)["Authorization"] == "Bearer tok"
    assert "Authorization" not in build_auth_headers(keyless)
    assert map_external_order_status("Out_For_Delivery").value == "in_transit"
    assert map_external_order_status("mystery").value == "pending"


def test_resync_keeps_finished_orders_and_their_notes():
    db = build_session()
    acme = seed_company(db)
    integration = _integration(db, acme, sync_riders=False, sync_customers=False)

    with httpx.Client(transport=httpx.MockTransport(_store_handler)) as http:
        run_sync(db, integration, client=http)
        order = db.query(Order).filter(Order.external_id == "A-100").one()
        apply_status(order, OrderStatus.DELIVERED, Actor.AGENT)
        order.notes = append_note(order.notes, "left at gate", Actor.AGENT)
        db.commit()
        run_sync(db, integration, client=http)

    db.refresh(order)
    assert order.status == "delivered"
    assert order.notes.endswith("]: left at gate")
