from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps import get_current_company
from app.models.company import Company
from app.services.company_settings import (
    get_map_settings,
    get_settings,
    notification_matrix,
    update_map_settings,
    update_settings,
    upsert_notification,
)

router = APIRouter(prefix="/v1/settings", tags=["settings"])


class SettingsPayload(BaseModel):
    business_type: Optional[str] = None
    date_format: Optional[str] = None
    time_format: Optional[str] = None
    distance_unit: Optional[str] = None
    map_type: Optional[str] = None
    real_time_tracking: Optional[bool] = None
    show_delay_time: Optional[bool] = None
    delay_minutes: Optional[int] = None
    theme_navbar_color: Optional[str] = None
    theme_button_color: Optional[str] = None
    theme_menu_hover_color: Optional[str] = None
    default_dashboard_view: Optional[str] = None
    enable_address_update: Optional[bool] = None
    enable_qr_code: Optional[bool] = None
    disable_ratings_tracking: Optional[bool] = None
    enable_eta_tracking: Optional[bool] = None
    disable_call_sms_tracking: Optional[bool] = None


class MapSettingsPayload(BaseModel):
    map_type: Optional[str] = None
    real_time_tracking: Optional[bool] = None
    web_key: Optional[str] = None
    android_key: Optional[str] = None
    ios_key: Optional[str] = None
    server_key: Optional[str] = None
    form_key: Optional[str] = None
    mappr_dashboard_url: Optional[str] = None


class NotificationPayload(BaseModel):
    event_type: Optional[str] = None
    sms_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    webhook_enabled: Optional[bool] = None
    webhook_url: Optional[str] = None


@router.get("")
def read_settings(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    return {"success": True, "data": get_settings(db, company.id)}


@router.patch("")
def patch_settings(
    payload: SettingsPayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    data = update_settings(db, company.id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Settings updated", "data": data}


@router.get("/map")
def read_map_settings(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    return {"success": True, "data": get_map_settings(db, company.id)}


@router.patch("/map")
def patch_map_settings(
    payload: MapSettingsPayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    data = update_map_settings(db, company.id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Map settings updated", "data": data}


@router.get("/notifications")
def read_notifications(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    return {"success": True, "data": notification_matrix(db, company.id)}


@router.patch("/notifications")
def patch_notification(
    payload: NotificationPayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    data = upsert_notification(db, company.id, payload.model_dump())
    return {"success": True, "message": "Notification setting updated", "data": data}
