from __future__ import annotations

import base64
import hashlib
import hmac
import json

from app.fsm.orders import Actor, OrderStatus, append_note, apply_status
from app.models.customer import Customer
from app.models.order import Order
from app.routers.webhooks import router as webhooks_router
from app.services.webhooks import sign_payload
from tests.fixtures_data import (
    ACME_API_KEY,
    ACME_WEBHOOK_SECRET,
    GLOBEX_API_KEY,
    GLOBEX_COMPANY,
    SHOPIFY_ORDER_PAYLOAD,
    WOOCOMMERCE_ORDER_PAYLOAD,
    build_client,
    build_session,
    seed_company,
    seed_order,
    seed_rider,
)


def _setup():
    db = build_session()
    acme = seed_company(db)
    globex = seed_company(db, GLOBEX_COMPANY)
    client = build_client(db, webhooks_router)
    return db, acme, globex, client


def _signed_post(client, body: dict, *, api_key=ACME_API_KEY, secret=ACME_WEBHOOK_SECRET):
    raw = json.dumps(body).encode("utf-8")
    return client.post(
        "/webhooks",
        content=raw,
        headers={
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "x-webhook-signature": "sha256=" + sign_payload(raw, secret),
        },
    )


def _globex_post(client, body):
    return client.post("/webhooks", json=body, headers={"x-api-key": GLOBEX_API_KEY})


# ---------------------------------------------------------------------------
# Generic event feed
# ---------------------------------------------------------------------------
def test_generic_feed_requires_api_key():
    _db, _acme, _globex, client = _setup()

    response = client.post("/webhooks", json={"event": "order.created", "data": {}})

    assert response.status_code == 401
    assert response.json()["error"] == "API key required in x-api-key header"


def test_tenant_with_secret_rejects_unsigned_or_forged_events():
    _db, _acme, _globex, client = _setup()
    body = {"event": "order.created", "data": {"delivery_address": "1 Main St"}}

    unsigned = client.post("/webhooks", json=body, headers={"x-api-key": ACME_API_KEY})
    forged = _signed_post(client, body, secret="not-the-secret")

    assert unsigned.status_code == 401
    assert forged.status_code == 401
    assert forged.json()["error"] == "Invalid webhook signature"


def test_signed_order_created_is_stored_once_per_external_id():
    db, acme, _globex, client = _setup()
    body = {
        "event": "order.created",
        "data": {"external_id": "pos-77", "delivery_address": "1 Main St", "total": "12.50", "customer_name": "Eve"},
    }

    first = _signed_post(client, body)
    second = _signed_post(client, body)

    assert first.status_code == 200
    assert first.json()["message"] == "Event 'order.created' processed successfully"
    assert second.status_code == 200
    orders = db.query(Order).filter(Order.company_id == acme.id).all()
    assert len(orders) == 1
    assert orders[0].external_id == "pos-77"
    assert orders[0].source == "webhook"


def _deliver_with_note(db, order, note):
    apply_status(order, OrderStatus.DELIVERED, Actor.DISPATCHER)
    order.notes = append_note(order.notes, note, Actor.AGENT)
    db.commit()
    db.refresh(order)
    return order.delivered_at


def test_redelivered_order_created_keeps_lifecycle_and_notes():
    db, acme, _globex, client = _setup()
    body = {"event": "order.created", "data": {"external_id": "pos-1", "delivery_address": "1 Main St", "total": "9.00"}}
    _signed_post(client, body)
    order = db.query(Order).filter(Order.company_id == acme.id).one()
    delivered_at = _deliver_with_note(db, order, "left with doorman")

    body["data"]["total"] = "11.00"
    response = _signed_post(client, body)

    assert response.status_code == 200
    db.refresh(order)
    assert order.status == "delivered"
    assert order.delivered_at == delivered_at
    assert order.payment_status == "completed"
    assert order.notes.endswith("]: left with doorman")
    assert float(order.total) == 11.0


def test_tenant_without_secret_accepts_unsigned_events():
    db, _acme, globex, client = _setup()

    response = _globex_post(client, {"event": "order.created", "data": {"delivery_address": "9 Side St"}})

    assert response.status_code == 200
    assert db.query(Order).filter(Order.company_id == globex.id).count() == 1


def test_unknown_or_missing_event_is_rejected():
    _db, _acme, _globex, client = _setup()

    unknown = _globex_post(client, {"event": "order.teleported", "data": {}})
    missing = _globex_post(client, {"data": {}})
    not_json = client.post("/webhooks", content=b"{oops", headers={"x-api-key": GLOBEX_API_KEY})

    assert unknown.status_code == 400
    assert unknown.json()["error"] == "Unknown event type: order.teleported"
    assert missing.json()["error"] == "Event type is required"
    assert not_json.json()["error"] == "Invalid JSON body"


def test_status_update_by_external_id_skips_adjacency():
    db, _acme, globex, client = _setup()
    order = seed_order(db, globex, external_id="ext-1")

    response = _globex_post(
        client, {"event": "order.status_updated", "data": {"external_order_id": "ext-1", "status": "delivered"}}
    )

    assert response.status_code == 200
    db.refresh(order)
    assert order.status == "delivered"
    assert order.delivered_at is not None


def test_status_update_needs_a_resolvable_target():
    db, acme, _globex, client = _setup()
    foreign = seed_order(db, acme)

    no_target = _globex_post(client, {"event": "order.status_updated", "data": {"status": "delivered"}})
    wrong_tenant = _globex_post(
        client, {"event": "order.status_updated", "data": {"order_id": foreign.id, "status": "delivered"}}
    )

    assert no_target.status_code == 400
    assert no_target.json()["error"] == "order_id or external_order_id is required"
    assert wrong_tenant.status_code == 404
    assert wrong_tenant.json()["error"] == "Order not found"


def test_rider_location_and_status_events():
    db, _acme, globex, client = _setup()
    rider = seed_rider(db, globex, external_id="drv-9")

    location = _globex_post(
        client,
        {"event": "rider.location_updated", "data": {"external_rider_id": "drv-9", "latitude": 1.5, "longitude": 2.5}},
    )
    status = _globex_post(client, {"event": "rider.status_updated", "data": {"rider_id": rider.id, "status": "break"}})
    bad_status = _globex_post(client, {"event": "rider.status_updated", "data": {"rider_id": rider.id, "status": "nap"}})

    assert location.status_code == 200
    assert status.status_code == 200
    assert bad_status.status_code == 400
    db.refresh(rider)
    assert (rider.latitude, rider.longitude) == (1.5, 2.5)
    assert rider.status == "break"


# ---------------------------------------------------------------------------
# Shopify
# ---------------------------------------------------------------------------
def test_shopify_order_is_idempotent_on_redelivery():
    db, acme, _globex, client = _setup()
    headers = {"x-api-key": ACME_API_KEY, "x-shopify-shop-domain": "acme.myshopify.com"}

    first = client.post("/webhooks/shopify", json=SHOPIFY_ORDER_PAYLOAD, headers=headers)
    second = client.post("/webhooks/shopify", json=SHOPIFY_ORDER_PAYLOAD, headers=headers)

    assert first.json()["message"] == "Shopify order received"
    assert second.json()["message"] == "Order updated"
    assert first.json()["order_id"] == second.json()["order_id"]
    assert first.json()["external_id"] == "shopify_820982911946154508"

    order = db.query(Order).filter(Order.company_id == acme.id).one()
    assert order.status == "pending"
    assert order.source == "shopify"
    assert order.customer_name == "Jon Snow"
    assert order.delivery_address == "123 Wall St, Apt 4, Winterfell, North 10001, Westeros"
    assert float(order.total) == 199.65
    assert order.items[1] == {"name": "Gloves", "quantity": 2, "price": 24.8}
    assert order.metadata_json["shop_domain"] == "acme.myshopify.com"


def test_shopify_fulfillment_updates_status():
    db, acme, _globex, client = _setup()
    headers = {"Authorization": f"Bearer {ACME_API_KEY}"}
    client.post("/webhooks/shopify", json=SHOPIFY_ORDER_PAYLOAD, headers=headers)

    response = client.post(
        "/webhooks/shopify", json={**SHOPIFY_ORDER_PAYLOAD, "fulfillment_status": "fulfilled"}, headers=headers
    )

    assert response.status_code == 200
    order = db.query(Order).filter(Order.company_id == acme.id).one()
    assert order.status == "delivered"


def test_shopify_redelivery_does_not_reopen_a_delivered_order():
    db, acme, _globex, client = _setup()
    headers = {"x-api-key": ACME_API_KEY}
    client.post("/webhooks/shopify", json=SHOPIFY_ORDER_PAYLOAD, headers=headers)
    order = db.query(Order).filter(Order.company_id == acme.id).one()
    _deliver_with_note(db, order, "signed by Jon")

    client.post("/webhooks/shopify", json={**SHOPIFY_ORDER_PAYLOAD, "fulfillment_status": None}, headers=headers)

    db.refresh(order)
    assert order.status == "delivered"
    assert "]: signed by Jon" in order.notes


def test_shopify_requires_key_and_order_id():
    _db, _acme, _globex, client = _setup()

    no_key = client.post("/webhooks/shopify", json=SHOPIFY_ORDER_PAYLOAD)
    no_id = client.post("/webhooks/shopify", json={"email": "x@example.com"}, headers={"x-api-key": ACME_API_KEY})

    assert no_key.status_code == 401
    assert no_key.json()["error"] == "Missing API key. Add x-api-key header."
    assert no_id.status_code == 400
    assert no_id.json()["error"] == "Shopify order id is required"


# ---------------------------------------------------------------------------
# WooCommerce
# ---------------------------------------------------------------------------
def _woo_headers(topic, raw=None, secret=ACME_WEBHOOK_SECRET):
    headers = {"x-api-key": ACME_API_KEY, "x-wc-webhook-topic": topic, "Content-Type": "application/json"}
    if raw is not None:
        digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).digest()
        headers["x-wc-webhook-signature"] = base64.b64encode(digest).decode("ascii")
    return headers


def test_woocommerce_created_links_customer_and_payment():
    db, acme, _globex, client = _setup()
    raw = json.dumps(WOOCOMMERCE_ORDER_PAYLOAD).encode("utf-8")

    response = client.post("/webhooks/woocommerce", content=raw, headers=_woo_headers("order.created", raw))

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "WooCommerce webhook processed: order.created",
        "company": "Acme Logistics",
    }
    order = db.query(Order).filter(Order.external_id == "woo_727").one()
    assert order.payment_status == "paid"
    assert order.delivery_address == "55 Main St, Springfield, US"
    customer = db.query(Customer).filter(Customer.company_id == acme.id).one()
    assert order.customer_id == customer.id
    assert customer.phone == "+15557770000"


def test_woocommerce_update_then_delete_cancels():
    db, _acme, _globex, client = _setup()
    client.post("/webhooks/woocommerce", json=WOOCOMMERCE_ORDER_PAYLOAD, headers=_woo_headers("order.created"))

    updated = {**WOOCOMMERCE_ORDER_PAYLOAD, "total": "50.00", "customer_note": "Side door"}
    client.post("/webhooks/woocommerce", json=updated, headers=_woo_headers("order.updated"))
    client.post("/webhooks/woocommerce", json={"id": 727}, headers=_woo_headers("order.deleted"))

    order = db.query(Order).filter(Order.external_id == "woo_727").one()
    assert float(order.total) == 50.0
    assert order.notes.splitlines()[0] == "Call on arrival"
    assert order.notes.endswith("]: Side door")
    assert order.status == "cancelled"


def test_woocommerce_signature_mismatch_is_only_logged():
    db, _acme, _globex, client = _setup()
    raw = json.dumps(WOOCOMMERCE_ORDER_PAYLOAD).encode("utf-8")

    response = client.post(
        "/webhooks/woocommerce",
        content=raw,
        headers=_woo_headers("order.created", raw, secret="wrong-secret"),
    )

    assert response.status_code == 200
    assert db.query(Order).filter(Order.external_id == "woo_727").count() == 1


def test_woocommerce_ignores_other_topics_and_requires_key():
    db, _acme, _globex, client = _setup()

    ignored = client.post("/webhooks/woocommerce", json={"id": 1}, headers=_woo_headers("product.updated"))
    no_key = client.post("/webhooks/woocommerce", json=WOOCOMMERCE_ORDER_PAYLOAD)

    assert ignored.status_code == 200
    assert ignored.json()["message"] == "WooCommerce webhook processed: product.updated"
    assert db.query(Order).count() == 0
    assert no_key.status_code == 401


def test_woocommerce_setup_document():
    _db, _acme, _globex, client = _setup()

    response = client.get("/webhooks/woocommerce")

    assert response.status_code == 200
    assert response.json()["supported_topics"] == ["order.created", "order.updated", "order.deleted"]


def test_woocommerce_update_appends_notes_without_wiping_them():
    db, _acme, _globex, client = _setup()
    client.post("/webhooks/woocommerce", json=WOOCOMMERCE_ORDER_PAYLOAD, headers=_woo_headers("order.created"))
    order = db.query(Order).filter(Order.external_id == "woo_727").one()
    order.notes = append_note(order.notes, "ring twice", Actor.DISPATCHER)
    db.commit()

    no_note = {**WOOCOMMERCE_ORDER_PAYLOAD, "customer_note": None}
    side_door = {**WOOCOMMERCE_ORDER_PAYLOAD, "customer_note": "Side door"}
    client.post("/webhooks/woocommerce", json=no_note, headers=_woo_headers("order.updated"))
    client.post("/webhooks/woocommerce", json=side_door, headers=_woo_headers("order.updated"))
    client.post("/webhooks/woocommerce", json=side_door, headers=_woo_headers("order.updated"))

    db.refresh(order)
    lines = order.notes.splitlines()
    assert lines[0] == "Call on arrival"
    assert lines[1].endswith("]: ring twice")
    assert lines[2].startswith("[Partner ")
    assert lines[2].endswith("]: Side door")
    assert len(lines) == 3
    assert order.payment_status == "paid"
