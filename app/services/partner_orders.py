"""Translation of commerce-platform order payloads into tenant orders.

Partner feeds are idempotent on ``external_id``: a re-delivered payload
updates the order it created the first time instead of inserting a copy.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.fsm.orders import Actor, OrderStatus, append_note, apply_status, coerce_status
from app.models.company import Company
from app.models.order import Order
from app.services.customers import find_or_create_customer
from utils.normalize import normalize_phone

logger = logging.getLogger(__name__)

SHOPIFY_FULFILLMENT_STATUS = {
    "fulfilled": OrderStatus.DELIVERED,
    "partial": OrderStatus.IN_TRANSIT,
    "restocked": OrderStatus.CANCELLED,
}

WOOCOMMERCE_STATUS = {
    "pending": OrderStatus.PENDING,
    "processing": OrderStatus.PENDING,
    "on-hold": OrderStatus.PENDING,
    "completed": OrderStatus.DELIVERED,
    "cancelled": OrderStatus.CANCELLED,
    "refunded": OrderStatus.CANCELLED,
    "failed": OrderStatus.CANCELLED,
}


@dataclass
class PartnerOrder:
    external_id: str
    source: str
    status: OrderStatus
    delivery_address: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    items: list = field(default_factory=list)
    total: Optional[Decimal] = None
    notes: Optional[str] = None
    payment_status: str = "pending"
    metadata: dict = field(default_factory=dict)


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def require_order_id(payload: Any, platform: str) -> Any:
    if not isinstance(payload, dict) or payload.get("id") in (None, ""):
        raise ValidationError(f"{platform} order id is required")
    return payload["id"]


# ---------------------------------------------------------------------------
# Shopify
# ---------------------------------------------------------------------------
def map_shopify_status(fulfillment_status: Optional[str]) -> OrderStatus:
    return SHOPIFY_FULFILLMENT_STATUS.get(fulfillment_status or "", OrderStatus.PENDING)


def format_shopify_address(address: Optional[dict]) -> str:
    if not address:
        return "No address provided"
    street = address.get("address1") or ""
    if address.get("address2"):
        street = f"{street}, {address['address2']}"
    region = " ".join(part for part in (address.get("province"), address.get("zip")) if part)
    parts = [street, address.get("city"), region, address.get("country")]
    return ", ".join(part for part in parts if part) or "No address provided"


def shopify_to_partner_order(payload: dict, *, shop_domain: Optional[str] = None) -> PartnerOrder:
    shopify_id = require_order_id(payload, "Shopify")
    address = payload.get("shipping_address") or payload.get("billing_address")
    line_items = payload.get("line_items") or []

    if address:
        customer_name = f"{address.get('first_name') or ''} {address.get('last_name') or ''}".strip()
    else:
        customer_name = ""

    return PartnerOrder(
        external_id=f"shopify_{shopify_id}",
        source="shopify",
        status=map_shopify_status(payload.get("fulfillment_status")),
        delivery_address=format_shopify_address(address),
        customer_name=customer_name or payload.get("email"),
        customer_phone=(address or {}).get("phone") or payload.get("phone"),
        customer_email=payload.get("email"),
        items=[
            {
                "name": item.get("name"),
                "quantity": item.get("quantity") or 1,
                "price": float(parse_decimal(item.get("price")) or 0),
            }
            for item in line_items
        ],
        total=parse_decimal(payload.get("total_price")),
        notes=payload.get("note") or None,
        metadata={
            "shopify_order_id": shopify_id,
            "shopify_order_number": payload.get("order_number"),
            "currency": payload.get("currency"),
            "financial_status": payload.get("financial_status"),
            "shop_domain": shop_domain,
            "description": ", ".join(
                f"{item.get('quantity') or 1}x {item.get('name')}" for item in line_items
            ),
        },
    )


# ---------------------------------------------------------------------------
# WooCommerce
# ---------------------------------------------------------------------------
def map_woocommerce_status(status: Optional[str]) -> OrderStatus:
    return WOOCOMMERCE_STATUS.get(status or "", OrderStatus.PENDING)


def verify_woocommerce_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """WooCommerce signs the raw body with base64(HMAC-SHA256)."""
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8"))


def woocommerce_to_partner_order(payload: dict) -> PartnerOrder:
    woo_id = require_order_id(payload, "WooCommerce")
    billing = payload.get("billing") or {}
    shipping = payload.get("shipping") or {}

    def pick(key: str) -> Optional[str]:
        return shipping.get(key) or billing.get(key)

    address = ", ".join(
        part
        for part in (
            pick("address_1"),
            pick("address_2"),
            pick("city"),
            pick("state"),
            pick("postcode"),
            pick("country"),
        )
        if part
    )
    name = f"{billing.get('first_name') or ''} {billing.get('last_name') or ''}".strip()
    woo_status = payload.get("status")
    paid = bool(payload.get("payment_method")) and woo_status in ("completed", "processing")

    return PartnerOrder(
        external_id=f"woo_{woo_id}",
        source="woocommerce",
        status=map_woocommerce_status(woo_status),
        delivery_address=address or "Address pending",
        customer_name=name or "WooCommerce Customer",
        customer_phone=billing.get("phone") or None,
        customer_email=billing.get("email") or None,
        items=[
            {
                "name": item.get("name"),
                "quantity": item.get("quantity") or 1,
                "price": float(parse_decimal(item.get("total")) or 0),
                "sku": item.get("sku"),
            }
            for item in payload.get("line_items") or []
        ],
        total=parse_decimal(payload.get("total")) or Decimal("0"),
        notes=payload.get("customer_note") or None,
        payment_status="paid" if paid else "pending",
        metadata={"woocommerce_order_id": woo_id, "woocommerce_status": woo_status},
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
def find_order_by_external_id(db: Session, company_id: int, external_id: str) -> Optional[Order]:
    return (
        db.query(Order)
        .filter(Order.company_id == company_id, Order.external_id == external_id)
        .first()
    )


def merge_partner_note(order: Order, note: Optional[str]) -> None:
    """Append a partner note unless that exact note is already on the order."""
    note = (note or "").strip()
    if not note:
        return
    for line in (order.notes or "").splitlines():
        if line.strip() == note or line.endswith(f"]: {note}"):
            return
    order.notes = append_note(order.notes, note, Actor.PARTNER)


def _refresh_existing(order: Order, partner: PartnerOrder, *, full_update: bool, lifecycle: bool) -> None:
    if lifecycle:
        current = coerce_status(order.status)
        # a finished order stays finished
        if current is None or not current.is_terminal:
            apply_status(order, partner.status, Actor.PARTNER)
        if partner.payment_status != "pending":
            order.payment_status = partner.payment_status
    if full_update:
        order.items = partner.items
        order.total = partner.total
        merge_partner_note(order, partner.notes)


def _new_order(db: Session, company: Company, partner: PartnerOrder, *, link_customer: bool) -> Order:
    customer_id = None
    if link_customer and (partner.customer_phone or partner.customer_email):
        customer = find_or_create_customer(
            db,
            company.id,
            name=partner.customer_name or "Customer",
            phone=partner.customer_phone,
            email=partner.customer_email,
            address=partner.delivery_address,
        )
        customer_id = customer.id

    return Order(
        company_id=company.id,
        external_id=partner.external_id,
        customer_id=customer_id,
        customer_name=partner.customer_name,
        customer_phone=normalize_phone(partner.customer_phone),
        customer_email=partner.customer_email,
        delivery_address=partner.delivery_address,
        items=partner.items,
        total=partner.total,
        notes=partner.notes,
        status=OrderStatus.PENDING.value,
        payment_status=partner.payment_status,
        source=partner.source,
        metadata_json=partner.metadata,
    )


def ingest_partner_order(
    db: Session,
    company: Company,
    partner: PartnerOrder,
    *,
    full_update: bool = False,
    link_customer: bool = False,
    lifecycle: bool = True,
) -> tuple[Order, bool]:
    """Create the order, or refresh the one already stored under its external id.

    Returns ``(order, created)``. With ``lifecycle=False`` a refresh leaves
    status and payment alone. Notes are only ever appended. A concurrent delivery that inserts the same
    external id first turns the losing insert into an update.
    """
    existing = find_order_by_external_id(db, company.id, partner.external_id)
    if existing is not None:
        _refresh_existing(existing, partner, full_update=full_update, lifecycle=lifecycle)
        db.commit()
        db.refresh(existing)
        return existing, False

    order = _new_order(db, company, partner, link_customer=link_customer)
    db.add(order)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_order_by_external_id(db, company.id, partner.external_id)
        if existing is None:
            raise
        logger.info(
            "partner order raced, updating instead",
            extra={"tenant_id": company.id, "external_id": partner.external_id},
        )
        _refresh_existing(existing, partner, full_update=full_update, lifecycle=lifecycle)
        db.commit()
        db.refresh(existing)
        return existing, False

    db.refresh(order)
    return order, True


def cancel_partner_order(db: Session, company_id: int, external_id: str) -> int:
    """Cancel every order stored under ``external_id``; returns the number touched."""
    orders = (
        db.query(Order)
        .filter(Order.company_id == company_id, Order.external_id == external_id)
        .all()
    )
    for order in orders:
        apply_status(order, OrderStatus.CANCELLED, Actor.PARTNER)
    db.commit()
    return len(orders)
