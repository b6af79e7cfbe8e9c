"""Pull sync from a tenant's external store (riders, orders, customers)."""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import INTEGRATION_SYNC_TIMEOUT_SECONDS
from app.core.errors import ValidationError
from app.fsm.orders import OrderStatus, coerce_status
from app.models.customer import Customer
from app.models.external_integration import ExternalIntegration
from app.models.integration_sync_log import IntegrationSyncLog
from app.models.order import Order
from app.models.rider import RIDER_STATUSES, Rider
from app.services.customers import find_or_create_customer
from app.services.partner_orders import merge_partner_note, parse_decimal
from utils.normalize import normalize_phone

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = {
    "woocommerce": {
        "riders_endpoint": "/wp-json/wc/v3/customers?role=driver",
        "orders_endpoint": "/wp-json/wc/v3/orders",
        "customers_endpoint": "/wp-json/wc/v3/customers",
    },
    "shopify": {
        "riders_endpoint": None,
        "orders_endpoint": "/admin/api/2024-01/orders.json",
        "customers_endpoint": "/admin/api/2024-01/customers.json",
    },
}

EXTERNAL_ORDER_STATUS = {
    "processing": OrderStatus.ASSIGNED,
    "confirmed": OrderStatus.ASSIGNED,
    "shipped": OrderStatus.IN_TRANSIT,
    "in_transit": OrderStatus.IN_TRANSIT,
    "out_for_delivery": OrderStatus.IN_TRANSIT,
    "delivered": OrderStatus.DELIVERED,
    "completed": OrderStatus.DELIVERED,
    "cancelled": OrderStatus.CANCELLED,
    "refunded": OrderStatus.CANCELLED,
}


@dataclass
class SyncCounter:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0


@dataclass
class SyncReport:
    riders: SyncCounter = field(default_factory=SyncCounter)
    orders: SyncCounter = field(default_factory=SyncCounter)
    customers: SyncCounter = field(default_factory=SyncCounter)
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def status(self) -> str:
        return "partial" if self.errors else "success"

    def totals(self, attr: str) -> int:
        return sum(getattr(counter, attr) for counter in (self.riders, self.orders, self.customers))

    def results(self) -> dict[str, dict[str, int]]:
        return {
            "riders": asdict(self.riders),
            "orders": asdict(self.orders),
            "customers": asdict(self.customers),
        }


def map_external_order_status(value: Optional[str]) -> OrderStatus:
    return EXTERNAL_ORDER_STATUS.get((value or "").strip().lower(), OrderStatus.PENDING)


def build_auth_headers(integration: ExternalIntegration) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if not integration.api_key:
        return headers
    if integration.integration_type == "woocommerce":
        raw = f"{integration.api_key}:{integration.api_secret or ''}".encode("utf-8")
        headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")
    elif integration.integration_type == "shopify":
        headers["X-Shopify-Access-Token"] = integration.api_key
    else:
        headers["Authorization"] = f"Bearer {integration.api_key}"
    return headers


def _extract_records(payload: Any, key: str) -> list[dict]:
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        records = payload.get(key) or payload.get("data") or []
    else:
        records = []
    return [record for record in records if isinstance(record, dict)]


# ---------------------------------------------------------------------------
# Record upserts; each raises ValueError for records it cannot use
# ---------------------------------------------------------------------------
def upsert_rider(db: Session, company_id: int, record: dict) -> bool:
    name = record.get("name")
    phone = normalize_phone(record.get("phone"))
    if not name:
        raise ValueError("rider without name")
    external_id = str(record.get("id") or phone or "")
    if not external_id:
        raise ValueError("rider without id or phone")

    rider = (
        db.query(Rider)
        .filter(Rider.company_id == company_id, Rider.external_id == external_id)
        .first()
    )
    created = rider is None
    if created:
        rider = Rider(company_id=company_id, external_id=external_id)
        db.add(rider)
    status = record.get("status")
    rider.name = name
    rider.phone = phone
    rider.email = record.get("email") or None
    rider.vehicle_type = record.get("vehicle_type") or "motorcycle"
    rider.status = status if status in RIDER_STATUSES else "offline"
    rider.latitude = record.get("latitude")
    rider.longitude = record.get("longitude")
    return created


def upsert_order(db: Session, integration: ExternalIntegration, record: dict) -> bool:
    if record.get("id") in (None, ""):
        raise ValueError("order without id")
    external_id = str(record["id"])
    company_id = integration.company_id

    customer_id = None
    if record.get("customer_phone") or record.get("customer_email"):
        customer = find_or_create_customer(
            db,
            company_id,
            name=record.get("customer_name") or "Unknown",
            phone=record.get("customer_phone"),
            email=record.get("customer_email"),
            address=record.get("delivery_address"),
        )
        customer_id = customer.id

    order = (
        db.query(Order)
        .filter(Order.company_id == company_id, Order.external_id == external_id)
        .first()
    )
    created = order is None
    if created:
        order = Order(company_id=company_id, external_id=external_id, payment_status="pending")
        db.add(order)
    order.customer_id = customer_id
    order.customer_name = record.get("customer_name")
    order.customer_phone = normalize_phone(record.get("customer_phone"))
    order.customer_email = record.get("customer_email")
    current = coerce_status(order.status)
    if current is None or not current.is_terminal:
        order.status = map_external_order_status(record.get("status")).value
    order.pickup_address = record.get("pickup_address") or integration.name
    order.delivery_address = record.get("delivery_address") or "Address pending"
    order.items = record.get("items") or []
    order.total = parse_decimal(record.get("total"))
    if created:
        order.notes = record.get("notes") or None
    else:
        merge_partner_note(order, record.get("notes"))
    order.source = integration.integration_type
    return created


def upsert_customer(db: Session, integration: ExternalIntegration, record: dict) -> bool:
    if record.get("id") in (None, ""):
        raise ValueError("customer without id")
    external_id = str(record["id"])
    billing = record.get("billing") or {}
    name = (
        record.get("name")
        or f"{record.get('first_name') or ''} {record.get('last_name') or ''}".strip()
        or f"{billing.get('first_name') or ''} {billing.get('last_name') or ''}".strip()
        or "Unknown"
    )
    address = record.get("address") or billing.get("address_1")

    customer = (
        db.query(Customer)
        .filter(Customer.company_id == integration.company_id, Customer.external_id == external_id)
        .first()
    )
    created = customer is None
    if created:
        customer = Customer(
            company_id=integration.company_id,
            external_id=external_id,
            total_orders=0,
            total_spent=0,
            addresses=[],
        )
        db.add(customer)
    customer.name = name
    customer.phone = normalize_phone(record.get("phone") or billing.get("phone"))
    customer.email = record.get("email") or billing.get("email")
    customer.external_source = integration.integration_type
    if address:
        customer.addresses = [{"address": address, "type": "delivery"}]
    return created


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
def _sync_collection(
    db: Session,
    client: httpx.Client,
    url: str,
    key: str,
    label: str,
    counter: SyncCounter,
    errors: list[str],
    upsert: Callable[[dict], bool],
) -> None:
    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        errors.append(f"{label} sync error: {exc}")
        logger.warning("integration fetch failed", extra={"url": url, "error": str(exc)})
        return
    if response.status_code >= 400:
        errors.append(f"{label} sync failed: {response.status_code} {response.reason_phrase}")
        return

    try:
        records = _extract_records(response.json(), key)
    except ValueError:
        errors.append(f"{label} sync failed: response is not JSON")
        return

    counter.fetched = len(records)
    for record in records:
        try:
            created = upsert(record)
            db.commit()
        except (SQLAlchemyError, ValueError, TypeError):
            db.rollback()
            counter.failed += 1
            logger.warning("integration record skipped", extra={"url": url}, exc_info=True)
            continue
        if created:
            counter.created += 1
        else:
            counter.updated += 1


def run_sync(db: Session, integration: ExternalIntegration, *, client: Optional[httpx.Client] = None) -> SyncReport:
    if not integration.is_active:
        raise ValidationError("Integration is not active")

    report = SyncReport()
    started = time.monotonic()
    company_id = integration.company_id
    plan = [
        (
            integration.sync_riders,
            integration.riders_endpoint,
            "riders",
            "Riders",
            report.riders,
            lambda record: upsert_rider(db, company_id, record),
        ),
        (
            integration.sync_orders,
            integration.orders_endpoint,
            "orders",
            "Orders",
            report.orders,
            lambda record: upsert_order(db, integration, record),
        ),
        (
            integration.sync_customers,
            integration.customers_endpoint,
            "customers",
            "Customers",
            report.customers,
            lambda record: upsert_customer(db, integration, record),
        ),
    ]

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=INTEGRATION_SYNC_TIMEOUT_SECONDS, headers=build_auth_headers(integration))
    try:
        for enabled, endpoint, key, label, counter, upsert in plan:
            if not enabled or not endpoint:
                continue
            _sync_collection(db, client, f"{integration.api_url}{endpoint}", key, label, counter, report.errors, upsert)
    finally:
        if owns_client:
            client.close()

    report.duration_ms = int((time.monotonic() - started) * 1000)
    error_message = "; ".join(report.errors) or None

    integration.last_sync_at = utcnow()
    integration.last_sync_status = report.status
    integration.last_sync_error = error_message
    integration.total_riders_synced = (integration.total_riders_synced or 0) + report.riders.created
    integration.total_orders_synced = (integration.total_orders_synced or 0) + report.orders.created
    integration.total_customers_synced = (integration.total_customers_synced or 0) + report.customers.created
    db.add(
        IntegrationSyncLog(
            integration_id=integration.id,
            sync_type="full",
            status=report.status,
            records_fetched=report.totals("fetched"),
            records_created=report.totals("created"),
            records_updated=report.totals("updated"),
            records_failed=report.totals("failed"),
            error_message=error_message,
            duration_ms=report.duration_ms,
        )
    )
    db.commit()
    logger.info(
        "integration sync finished",
        extra={"tenant_id": company_id, "integration": integration.integration_type, "event": report.status},
    )
    return report
