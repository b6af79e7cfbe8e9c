"""Order operations for the dispatcher (company) and rider (agent) surfaces."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.core.clock import utcnow
from app.core.database import best_effort
from app.core.errors import InternalError, NotFound, ValidationError
from app.fsm.orders import (
    AGENT_ACTIVE_STATUSES,
    AGENT_STATUSES,
    Actor,
    OrderStatus,
    TransitionResult,
    advance,
    append_note,
    cancel,
    parse_status,
)
from app.models.company import Company
from app.models.customer import Customer
from app.models.order import Order
from app.models.rider import Rider
from app.services.activity_log import log_agent_activity
from app.services.agent_auth import AgentContext
from app.services.customers import find_or_create_customer, increment_customer_stats
from app.services.partner_orders import parse_decimal
from utils.normalize import normalize_phone

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("pending", "paid", "completed", "failed")
ORDER_NOT_FOUND = "Order not found"


def _commit(db: Session, failure_message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(failure_message)
        raise InternalError(failure_message) from exc


def _with_relations(query):
    return query.options(joinedload(Order.rider), joinedload(Order.customer))


def _page(query, page: int, limit: int):
    total = query.count()
    rows = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def get_company_order(db: Session, company_id: int, order_id: int) -> Order:
    order = (
        _with_relations(db.query(Order))
        .filter(Order.id == order_id, Order.company_id == company_id)
        .first()
    )
    if order is None:
        raise NotFound(ORDER_NOT_FOUND)
    return order


def get_rider_order(db: Session, context: AgentContext, order_id: int) -> Order:
    order = (
        _with_relations(db.query(Order))
        .filter(
            Order.id == order_id,
            Order.rider_id == context.rider_id,
            Order.company_id == context.company_id,
        )
        .first()
    )
    if order is None:
        raise NotFound(ORDER_NOT_FOUND)
    return order


def list_company_orders(
    db: Session,
    company_id: int,
    *,
    status: Optional[str] = None,
    rider_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    page: int = 1,
    limit: int = 50,
):
    query = _with_relations(db.query(Order)).filter(Order.company_id == company_id)
    if status:
        query = query.filter(Order.status == parse_status(status).value)
    if rider_id is not None:
        query = query.filter(Order.rider_id == rider_id)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    return _page(query, page, limit)


def list_rider_orders(db: Session, context: AgentContext, *, status: Optional[str] = None, page: int = 1, limit: int = 20):
    query = _with_relations(db.query(Order)).filter(
        Order.rider_id == context.rider_id,
        Order.company_id == context.company_id,
    )
    if not status or status == "all":
        query = query.filter(Order.status.in_([s.value for s in AGENT_ACTIVE_STATUSES]))
    else:
        query = query.filter(Order.status == parse_status(status).value)
    return _page(query, page, limit)


def _tenant_rider(db: Session, company_id: int, rider_id: int) -> Rider:
    rider = db.query(Rider).filter(Rider.id == rider_id, Rider.company_id == company_id).first()
    if rider is None:
        raise NotFound("Rider not found")
    return rider


def _tenant_customer(db: Session, company_id: int, customer_id: int) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id, Customer.company_id == company_id).first()
    if customer is None:
        raise NotFound("Customer not found")
    return customer


# ---------------------------------------------------------------------------
# Rider path
# ---------------------------------------------------------------------------
@dataclass
class AgentOrderUpdate:
    status: Optional[str] = None
    notes: Optional[str] = None
    signature_url: Optional[str] = None
    photo_proof_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def _activity_type(status: Optional[OrderStatus]) -> str:
    if status is OrderStatus.DELIVERED:
        return "order_delivered"
    if status is OrderStatus.PICKED_UP:
        return "order_picked_up"
    return "order_updated"


def update_order_as_rider(db: Session, context: AgentContext, order_id: int, update: AgentOrderUpdate) -> Order:
    order = get_rider_order(db, context, order_id)
    now = utcnow()

    requested = parse_status(update.status, allowed=AGENT_STATUSES) if update.status else None
    previous = order.status
    if requested is not None:
        advance(order, requested, Actor.AGENT, now=now)
    if update.notes and update.notes.strip():
        order.notes = append_note(order.notes, update.notes, Actor.AGENT, now=now)
    _commit(db, "Failed to update order")
    db.refresh(order)

    best_effort(
        db,
        "log rider order update",
        log_agent_activity,
        db,
        rider_id=context.rider_id,
        company_id=context.company_id,
        session_id=context.session_id,
        activity_type=_activity_type(requested),
        data={
            "order_id": order.id,
            "old_status": previous,
            "new_status": requested.value if requested else None,
            "signature_url": update.signature_url,
            "photo_proof_url": update.photo_proof_url,
            "latitude": update.latitude,
            "longitude": update.longitude,
        },
    )
    logger.info(
        "rider order update",
        extra={"tenant_id": context.company_id, "rider_id": context.rider_id, "event": _activity_type(requested)},
    )
    return order


# ---------------------------------------------------------------------------
# Dispatcher path
# ---------------------------------------------------------------------------
def create_order(db: Session, company: Company, payload: Mapping[str, Any]) -> Order:
    delivery_address = (payload.get("delivery_address") or "").strip()
    if not delivery_address:
        raise ValidationError("delivery_address is required")

    customer = None
    if payload.get("customer_id") is not None:
        customer = _tenant_customer(db, company.id, payload["customer_id"])
    elif payload.get("customer_name"):
        customer = find_or_create_customer(
            db,
            company.id,
            name=payload["customer_name"],
            phone=payload.get("customer_phone"),
            email=payload.get("customer_email"),
            address=delivery_address,
        )

    rider = _tenant_rider(db, company.id, payload["rider_id"]) if payload.get("rider_id") is not None else None

    subtotal = parse_decimal(payload.get("subtotal"))
    delivery_fee = parse_decimal(payload.get("delivery_fee"))
    total = parse_decimal(payload.get("total"))
    if total is None and (subtotal is not None or delivery_fee is not None):
        total = (subtotal or Decimal("0")) + (delivery_fee or Decimal("0"))

    order = Order(
        company_id=company.id,
        external_id=payload.get("external_id") or None,
        customer_id=customer.id if customer else None,
        rider_id=rider.id if rider else None,
        customer_name=payload.get("customer_name") or (customer.name if customer else None),
        customer_phone=normalize_phone(payload.get("customer_phone")) or (customer.phone if customer else None),
        customer_email=payload.get("customer_email") or (customer.email if customer else None),
        pickup_address=payload.get("pickup_address"),
        delivery_address=delivery_address,
        items=payload.get("items") or [],
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=total,
        payment_method=payload.get("payment_method"),
        payment_status="pending",
        status=(OrderStatus.ASSIGNED if rider else OrderStatus.PENDING).value,
        notes=payload.get("notes") or None,
        scheduled_at=payload.get("scheduled_at"),
        source="api",
    )
    db.add(order)
    _commit(db, "Failed to create order")
    db.refresh(order)

    if customer is not None:
        best_effort(db, "increment customer stats", increment_customer_stats, db, customer.id, total)

    logger.info("order created", extra={"tenant_id": company.id, "event": order.status})
    return order


def update_order(db: Session, company: Company, order_id: int, changes: Mapping[str, Any]) -> tuple[Order, Optional[TransitionResult]]:
    """Apply a dispatcher PATCH; returns the order and the status change, if any."""
    if not changes:
        raise ValidationError("No fields to update")

    order = get_company_order(db, company.id, order_id)
    now = utcnow()
    result = None

    if "rider_id" in changes:
        rider_id = changes["rider_id"]
        order.rider_id = _tenant_rider(db, company.id, rider_id).id if rider_id is not None else None

    if changes.get("status"):
        result = advance(order, parse_status(changes["status"]), Actor.DISPATCHER, now=now)
    elif changes.get("rider_id") is not None and order.status == OrderStatus.PENDING.value:
        result = advance(order, OrderStatus.ASSIGNED, Actor.DISPATCHER, now=now)

    if "payment_status" in changes:
        if changes["payment_status"] not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment_status. Must be one of: {', '.join(PAYMENT_STATUSES)}")
        order.payment_status = changes["payment_status"]
    for key in ("delivery_address", "pickup_address"):
        if changes.get(key):
            setattr(order, key, changes[key])
    if changes.get("notes") and str(changes["notes"]).strip():
        order.notes = append_note(order.notes, changes["notes"], Actor.DISPATCHER, now=now)

    _commit(db, "Failed to update order")
    db.refresh(order)
    return order, result


def cancel_order(db: Session, company: Company, order_id: int) -> Order:
    order = get_company_order(db, company.id, order_id)
    cancel(order)
    _commit(db, "Failed to cancel order")
    db.refresh(order)
    logger.info("order cancelled", extra={"tenant_id": company.id})
    return order
