from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.clock import isoformat
from app.core.database import get_db
from app.core.errors import ValidationError
from app.services.agent_auth import DeviceInfo, login, logout

router = APIRouter(prefix="/agent/auth", tags=["agent-auth"])


class AgentLoginPayload(BaseModel):
    company_code: Optional[str] = None
    phone: Optional[str] = None
    pin_code: Optional[str] = None
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    device_model: Optional[str] = None
    app_version: Optional[str] = None
    push_token: Optional[str] = None


@router.post("/login")
def agent_login(payload: AgentLoginPayload, db: Session = Depends(get_db)):
    if not (payload.company_code and payload.phone and payload.pin_code and payload.device_id):
        raise ValidationError("Missing required fields: company_code, phone, pin_code, device_id")

    result = login(
        db,
        company_code=payload.company_code,
        phone=payload.phone,
        pin_code=payload.pin_code,
        device=DeviceInfo(
            device_id=payload.device_id,
            device_type=payload.device_type,
            device_model=payload.device_model,
            app_version=payload.app_version,
            push_token=payload.push_token,
        ),
    )
    session, rider, company = result["session"], result["rider"], result["company"]
    return {
        "success": True,
        "message": "Login successful",
        "data": {
            "session_token": session.session_token,
            "expires_at": isoformat(session.expires_at),
            "rider": {
                "id": rider.id,
                "name": rider.name,
                "phone": rider.phone,
                "email": rider.email,
                "vehicle_type": rider.vehicle_type,
            },
            "company": {"id": company.id, "name": company.name},
        },
    }


@router.post("/logout")
def agent_logout(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    logout(db, authorization)
    return {"success": True, "message": "Logged out successfully"}
