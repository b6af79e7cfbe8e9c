"""Handlers for the events partners push to ``POST /webhooks``."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import NotFound, ValidationError
from app.fsm.orders import Actor, OrderStatus, apply_status, parse_status
from app.models.company import Company
from app.models.order import Order
from app.models.rider import RIDER_STATUSES, Rider
from app.services.partner_orders import PartnerOrder, ingest_partner_order, parse_decimal

logger = logging.getLogger(__name__)

EventHandler = Callable[[Session, Company, dict], None]


def _resolve(db: Session, model, company_id: int, data: dict, id_key: str, external_key: str):
    """Find a tenant row by internal id, else by partner id.

    400 when the payload names neither, 404 when nothing matches.
    """
    query = db.query(model).filter(model.company_id == company_id)
    if data.get(id_key) not in (None, ""):
        row = query.filter(model.id == data[id_key]).first()
    elif data.get(external_key) not in (None, ""):
        row = query.filter(model.external_id == str(data[external_key])).first()
    else:
        raise ValidationError(f"{id_key} or {external_key} is required")
    if row is None:
        raise NotFound(f"{model.__name__} not found")
    return row


def handle_rider_location(db: Session, company: Company, data: dict) -> None:
    rider = _resolve(db, Rider, company.id, data, "rider_id", "external_rider_id")
    rider.latitude = data.get("latitude")
    rider.longitude = data.get("longitude")
    if data.get("battery_level") is not None:
        rider.battery_level = data.get("battery_level")
    rider.last_seen = utcnow()
    rider.status = "active"
    db.commit()


def handle_order_created(db: Session, company: Company, data: dict) -> None:
    if not data.get("delivery_address"):
        raise ValidationError("delivery_address is required")

    partner = PartnerOrder(
        external_id=str(data["external_id"]) if data.get("external_id") else "",
        source="webhook",
        status=OrderStatus.PENDING,
        delivery_address=data["delivery_address"],
        customer_name=data.get("customer_name"),
        customer_phone=data.get("customer_phone"),
        items=data.get("items") or [],
        total=parse_decimal(data.get("total")),
    )
    if partner.external_id:
        # a re-delivered create refreshes content only
        ingest_partner_order(db, company, partner, full_update=True, lifecycle=False)
        return

    db.add(
        Order(
            company_id=company.id,
            customer_name=partner.customer_name,
            customer_phone=partner.customer_phone,
            delivery_address=partner.delivery_address,
            items=partner.items,
            total=partner.total,
            status=OrderStatus.PENDING.value,
            payment_status="pending",
            source=partner.source,
        )
    )
    db.commit()


def handle_order_status(db: Session, company: Company, data: dict) -> None:
    status = parse_status(data.get("status"))
    order = _resolve(db, Order, company.id, data, "order_id", "external_order_id")
    apply_status(order, status, Actor.PARTNER)
    db.commit()


def handle_rider_status(db: Session, company: Company, data: dict) -> None:
    status = (data.get("status") or "").strip().lower()
    if status not in RIDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(RIDER_STATUSES)}")
    rider = _resolve(db, Rider, company.id, data, "rider_id", "external_rider_id")
    rider.status = status
    db.commit()


EVENT_HANDLERS: dict[str, EventHandler] = {
    "rider.location_updated": handle_rider_location,
    "order.created": handle_order_created,
    "order.status_updated": handle_order_status,
    "rider.status_updated": handle_rider_status,
}


def process_event(db: Session, company: Company, event: Optional[str], data: Any) -> None:
    if not event:
        raise ValidationError("Event type is required")
    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        raise ValidationError(f"Unknown event type: {event}")
    handler(db, company, data if isinstance(data, dict) else {})
    logger.info("inbound event processed", extra={"tenant_id": company.id, "event": event})
