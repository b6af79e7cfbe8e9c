"""Dispatcher view of rider sessions and the live roster."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.clock import isoformat, utcnow
from app.core.database import get_db
from app.core.errors import ValidationError
from app.deps import get_current_company
from app.models.agent_session import AgentSession
from app.models.company import Company
from app.models.rider import Rider
from app.schemas.responses import session_to_dict
from app.services.agent_auth import deactivate_rider_sessions, set_rider_pin
from app.services.riders import get_rider

router = APIRouter(prefix="/v1/agents", tags=["agents"])

PIN_PATTERN = re.compile(r"^\d{6}$")
RECENT_SESSIONS_LIMIT = 10


class PinPayload(BaseModel):
    pin_code: Optional[str] = None


@router.get("/active")
def active_agents(
    include_offline: bool = False,
    minutes: int = Query(default=10, ge=1),
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    threshold = utcnow() - timedelta(minutes=minutes)
    query = (
        db.query(Rider, AgentSession)
        .join(AgentSession, AgentSession.rider_id == Rider.id)
        .filter(
            Rider.company_id == company.id,
            AgentSession.company_id == company.id,
            AgentSession.is_active.is_(True),
        )
    )
    if not include_offline:
        query = query.filter(Rider.last_seen >= threshold)

    agents: dict[int, dict] = {}
    for rider, session in query.order_by(Rider.id.asc(), AgentSession.last_active.desc()).all():
        if rider.id in agents:
            continue
        agents[rider.id] = {
            "id": rider.id,
            "name": rider.name,
            "phone": rider.phone,
            "email": rider.email,
            "status": rider.status,
            "location": {"latitude": rider.latitude, "longitude": rider.longitude},
            "battery_level": rider.battery_level,
            "vehicle_type": rider.vehicle_type,
            "last_seen": isoformat(rider.last_seen),
            "is_online": bool(rider.last_seen and rider.last_seen > threshold),
            "session": {
                "device_type": session.device_type,
                "device_model": session.device_model,
                "app_version": session.app_version,
                "last_active": isoformat(session.last_active),
            },
        }

    data = list(agents.values())
    return {
        "success": True,
        "data": data,
        "summary": {
            "total": len(data),
            "online": sum(1 for agent in data if agent["is_online"]),
            "active": sum(1 for agent in data if agent["status"] == "active"),
            "busy": sum(1 for agent in data if agent["status"] == "busy"),
        },
        "timestamp": isoformat(utcnow()),
    }


@router.get("/{rider_id}/sessions")
def list_sessions(rider_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    rider = get_rider(db, company.id, rider_id)
    sessions = (
        db.query(AgentSession)
        .filter(AgentSession.rider_id == rider.id, AgentSession.company_id == company.id)
        .order_by(AgentSession.created_at.desc(), AgentSession.id.desc())
        .limit(RECENT_SESSIONS_LIMIT)
        .all()
    )
    return {
        "success": True,
        "data": {
            "rider": {"id": rider.id, "name": rider.name, "phone": rider.phone, "status": rider.status},
            "sessions": [session_to_dict(session) for session in sessions],
        },
    }


@router.post("/{rider_id}/sessions", status_code=status.HTTP_201_CREATED)
def set_pin(
    rider_id: int,
    payload: PinPayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    if not payload.pin_code or not PIN_PATTERN.match(payload.pin_code):
        raise ValidationError("PIN must be a 6-digit number")

    rider = get_rider(db, company.id, rider_id)
    set_rider_pin(db, rider, payload.pin_code)
    db.commit()
    return {
        "success": True,
        "message": f"PIN set for {rider.name}",
        "data": {"rider_id": rider.id, "rider_name": rider.name, "pin_set": True},
    }


@router.delete("/{rider_id}/sessions")
def invalidate_sessions(rider_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    rider = get_rider(db, company.id, rider_id)
    count = deactivate_rider_sessions(db, rider_id=rider.id, company_id=company.id)
    rider.status = "offline"
    db.commit()
    return {
        "success": True,
        "message": "All sessions invalidated. Agent will need to login again.",
        "data": {"sessions_invalidated": count},
    }
