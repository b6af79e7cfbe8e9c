"""Rider app surface; every route runs under an agent session."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.clock import isoformat, start_of_day, utcnow
from app.core.database import best_effort, get_db
from app.core.errors import NotFound, ValidationError
from app.deps import get_agent_session
from app.fsm.orders import AGENT_ACTIVE_STATUSES, OrderStatus
from app.models.agent_session import AgentSession
from app.models.company import Company
from app.models.order import Order
from app.models.rider import Rider
from app.schemas.responses import order_to_dict, pagination
from app.services.activity_log import log_agent_activity
from app.services.agent_auth import AgentContext
from app.services.orders import AgentOrderUpdate, get_rider_order, list_rider_orders, update_order_as_rider
from app.services.riders import add_location_history, apply_location, validate_rider_status

router = APIRouter(prefix="/agent", tags=["agent"])


class ProfileUpdatePayload(BaseModel):
    status: Optional[str] = None
    push_token: Optional[str] = None


class LocationPayload(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    battery_level: Optional[int] = None
    speed: Optional[float] = None
    heading: Optional[float] = None


class AgentOrderPayload(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None
    signature_url: Optional[str] = None
    photo_proof_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def _session_rider(db: Session, context: AgentContext) -> Rider:
    rider = (
        db.query(Rider)
        .filter(Rider.id == context.rider_id, Rider.company_id == context.company_id)
        .first()
    )
    if rider is None:
        raise NotFound("Rider not found")
    return rider


def _rider_profile(rider: Rider) -> dict:
    return {
        "id": rider.id,
        "name": rider.name,
        "phone": rider.phone,
        "email": rider.email,
        "vehicle_type": rider.vehicle_type,
        "status": rider.status,
        "latitude": rider.latitude,
        "longitude": rider.longitude,
        "battery_level": rider.battery_level,
        "last_seen": isoformat(rider.last_seen),
        "created_at": isoformat(rider.created_at),
    }


def _rider_location(rider: Rider) -> dict:
    return {
        "id": rider.id,
        "name": rider.name,
        "status": rider.status,
        "latitude": rider.latitude,
        "longitude": rider.longitude,
        "battery_level": rider.battery_level,
        "last_seen": isoformat(rider.last_seen),
    }


@router.get("/profile")
def get_profile(context: AgentContext = Depends(get_agent_session), db: Session = Depends(get_db)):
    rider = _session_rider(db, context)
    company = db.query(Company).filter(Company.id == context.company_id).first()
    session = db.query(AgentSession).filter(AgentSession.id == context.session_id).first()

    rider_orders = db.query(Order).filter(Order.rider_id == rider.id, Order.company_id == context.company_id)
    today_deliveries = rider_orders.filter(
        Order.status == OrderStatus.DELIVERED.value,
        Order.delivered_at >= start_of_day(utcnow()),
    ).count()
    active_orders = rider_orders.filter(Order.status.in_([s.value for s in AGENT_ACTIVE_STATUSES])).count()

    return {
        "success": True,
        "data": {
            "rider": _rider_profile(rider),
            "company": {"id": company.id, "name": company.name} if company else None,
            "stats": {"today_deliveries": today_deliveries, "active_orders": active_orders},
            "session": {
                "id": context.session_id,
                "device_id": context.device_id,
                "expires_at": isoformat(session.expires_at) if session else None,
            },
        },
    }


@router.patch("/profile")
def update_profile(
    payload: ProfileUpdatePayload,
    context: AgentContext = Depends(get_agent_session),
    db: Session = Depends(get_db),
):
    rider = _session_rider(db, context)
    if payload.status:
        validate_rider_status(payload.status)
        rider.status = payload.status
        rider.last_seen = utcnow()
    if payload.push_token:
        rider.push_token = payload.push_token
        db.query(AgentSession).filter(AgentSession.id == context.session_id).update(
            {AgentSession.push_token: payload.push_token}, synchronize_session=False
        )
    db.commit()
    db.refresh(rider)

    if payload.status:
        best_effort(
            db,
            "log status change",
            log_agent_activity,
            db,
            rider_id=rider.id,
            company_id=context.company_id,
            session_id=context.session_id,
            activity_type="status_change",
            data={"new_status": payload.status},
        )

    return {
        "success": True,
        "message": "Profile updated",
        "data": {
            "id": rider.id,
            "name": rider.name,
            "phone": rider.phone,
            "status": rider.status,
            "vehicle_type": rider.vehicle_type,
        },
    }


@router.post("/location")
def update_location(
    payload: LocationPayload,
    context: AgentContext = Depends(get_agent_session),
    db: Session = Depends(get_db),
):
    if payload.latitude is None or payload.longitude is None:
        raise ValidationError("Latitude and longitude are required")

    rider = _session_rider(db, context)
    now = utcnow()
    apply_location(
        rider,
        latitude=payload.latitude,
        longitude=payload.longitude,
        battery_level=payload.battery_level,
        now=now,
    )
    rider.status = "active"
    db.query(AgentSession).filter(AgentSession.id == context.session_id).update(
        {AgentSession.last_active: now}, synchronize_session=False
    )
    db.commit()
    db.refresh(rider)

    best_effort(
        db,
        "record location history",
        add_location_history,
        db,
        rider,
        latitude=payload.latitude,
        longitude=payload.longitude,
        speed=payload.speed,
        heading=payload.heading,
        battery_level=payload.battery_level,
        now=now,
    )
    return {"success": True, "message": "Location updated", "data": _rider_location(rider)}


@router.get("/location")
def get_location(context: AgentContext = Depends(get_agent_session), db: Session = Depends(get_db)):
    rider = _session_rider(db, context)
    return {"success": True, "data": _rider_location(rider)}


@router.get("/orders")
def list_orders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    context: AgentContext = Depends(get_agent_session),
    db: Session = Depends(get_db),
):
    rows, total = list_rider_orders(db, context, status=status, page=page, limit=limit)
    return {
        "success": True,
        "data": [order_to_dict(order) for order in rows],
        "pagination": pagination(page, limit, total),
    }


@router.get("/orders/{order_id}")
def get_order(order_id: int, context: AgentContext = Depends(get_agent_session), db: Session = Depends(get_db)):
    return {"success": True, "data": order_to_dict(get_rider_order(db, context, order_id))}


@router.patch("/orders/{order_id}")
def update_order(
    order_id: int,
    payload: AgentOrderPayload,
    context: AgentContext = Depends(get_agent_session),
    db: Session = Depends(get_db),
):
    order = update_order_as_rider(db, context, order_id, AgentOrderUpdate(**payload.model_dump()))
    return {
        "success": True,
        "message": f"Order {payload.status or 'updated'} successfully",
        "data": order_to_dict(order),
    }
