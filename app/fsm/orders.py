"""Order lifecycle state machine.

pending -> assigned -> picked_up -> in_transit -> delivered | failed, with
cancelled reachable by the dispatcher from any non-terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from app.core.clock import utcnow
from app.core.errors import InvalidTransition, ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


class Actor(str, Enum):
    AGENT = "Agent"
    DISPATCHER = "Dispatcher"
    PARTNER = "Partner"


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ASSIGNED, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.PICKED_UP, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses a rider may submit from the agent app
AGENT_STATUSES: tuple[OrderStatus, ...] = (
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.FAILED,
)

# What the rider sees in the default order list
AGENT_ACTIVE_STATUSES: tuple[OrderStatus, ...] = (
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
)

STATUS_EVENTS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "order.created",
    OrderStatus.ASSIGNED: "order.assigned",
    OrderStatus.PICKED_UP: "order.picked_up",
    OrderStatus.IN_TRANSIT: "order.in_transit",
    OrderStatus.DELIVERED: "order.delivered",
    OrderStatus.CANCELLED: "order.cancelled",
    OrderStatus.FAILED: "order.failed",
}
ORDER_UPDATED_EVENT = "order.updated"


def parse_status(value: str | None, *, allowed: tuple[OrderStatus, ...] | None = None) -> OrderStatus:
    """Parse a client supplied status, raising ValidationError for anything unknown."""
    choices = allowed or tuple(OrderStatus)
    normalized = (value or "").strip().lower()
    for status in choices:
        if status.value == normalized:
            return status
    raise ValidationError(f"Invalid status. Must be one of: {', '.join(s.value for s in choices)}")


def coerce_status(value: str | None) -> OrderStatus | None:
    try:
        return OrderStatus((value or "").strip().lower())
    except ValueError:
        return None


def allowed_next(current: OrderStatus, actor: Actor) -> frozenset[OrderStatus]:
    allowed = TRANSITIONS[current]
    if actor is Actor.AGENT:
        return allowed - {OrderStatus.CANCELLED}
    return allowed


def transition(current: str | OrderStatus, requested: OrderStatus, actor: Actor) -> OrderStatus:
    """Total transition function: the new status, or InvalidTransition.

    A stored status outside the enum has no adjacency and rejects everything.
    Dispatchers re-sending the current status get a no-op.
    """
    current_status = coerce_status(current.value if isinstance(current, OrderStatus) else current)
    current_label = current_status.value if current_status else str(current)
    if current_status is not None:
        if actor is Actor.DISPATCHER and requested is current_status:
            return current_status
        if requested in allowed_next(current_status, actor):
            return requested
    raise InvalidTransition(f"Cannot transition from {current_label} to {requested.value}")


def status_to_event(status: str | OrderStatus | None) -> str:
    parsed = status if isinstance(status, OrderStatus) else coerce_status(status)
    if parsed is None:
        return ORDER_UPDATED_EVENT
    return STATUS_EVENTS.get(parsed, ORDER_UPDATED_EVENT)


def append_note(existing: str | None, note: str, actor: Actor, *, now: datetime | None = None) -> str:
    stamp = (now or utcnow()).isoformat()
    entry = f"[{actor.value} {stamp}]: {note.strip()}"
    if not existing:
        return entry
    return f"{existing}\n{entry}"


@dataclass
class TransitionResult:
    previous: str
    current: OrderStatus
    changed: bool


def apply_status(order, new_status: OrderStatus, actor: Actor, *, now: datetime | None = None) -> TransitionResult:
    """Write ``new_status`` on ``order`` together with its lifecycle side effects.

    Callers validate with :func:`transition` first; partner feeds and
    cancellation apply a status directly.
    """
    now = now or utcnow()
    previous = order.status
    changed = previous != new_status.value
    order.status = new_status.value
    if not changed:
        return TransitionResult(previous=previous, current=new_status, changed=False)

    if new_status is OrderStatus.PICKED_UP and not order.picked_up_at:
        order.picked_up_at = now
    if new_status is OrderStatus.DELIVERED:
        order.delivered_at = now
        if actor is Actor.DISPATCHER:
            order.payment_status = "completed"
    return TransitionResult(previous=previous, current=new_status, changed=True)


def advance(order, requested: OrderStatus, actor: Actor, *, now: datetime | None = None) -> TransitionResult:
    new_status = transition(order.status, requested, actor)
    return apply_status(order, new_status, actor, now=now)


def cancel(order, *, now: datetime | None = None) -> TransitionResult:
    """Administrative cancellation; not subject to the adjacency table."""
    return apply_status(order, OrderStatus.CANCELLED, Actor.DISPATCHER, now=now)
