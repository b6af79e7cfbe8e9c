"""Per-tenant dashboard, map and notification preferences.

Rows are created lazily: reads fall back to the defaults below until the
tenant saves something.
"""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.company_settings import CompanySettings
from app.models.map_settings import MapSettings
from app.models.notification_setting import NotificationSetting

DEFAULT_SETTINGS: dict[str, Any] = {
    "business_type": "pickup",
    "date_format": "DD MMM YYYY",
    "time_format": "12",
    "distance_unit": "km",
    "map_type": "google",
    "real_time_tracking": True,
    "show_delay_time": True,
    "delay_minutes": 5,
    "theme_navbar_color": "#4F46E5",
    "theme_button_color": "#4F46E5",
    "theme_menu_hover_color": "#EEF2FF",
    "default_dashboard_view": "map",
    "enable_address_update": False,
    "enable_qr_code": False,
    "disable_ratings_tracking": False,
    "enable_eta_tracking": True,
    "disable_call_sms_tracking": False,
}

DEFAULT_MAP_SETTINGS: dict[str, Any] = {
    "map_type": "google",
    "real_time_tracking": False,
    "web_key": "",
    "android_key": "",
    "ios_key": "",
    "server_key": "",
    "form_key": "",
    "mappr_dashboard_url": "https://mappr.io/dashboard",
}

DEFAULT_EVENTS = (
    "task_created",
    "task_assigned",
    "task_started",
    "task_completed",
    "task_failed",
    "task_cancelled",
    "agent_on_duty",
    "agent_off_duty",
)

NOTIFICATION_CHANNELS = ("sms_enabled", "email_enabled", "webhook_enabled")


def _row_to_dict(row, company_id: int, defaults: Mapping[str, Any]) -> dict[str, Any]:
    data = {"id": None, "company_id": company_id, **defaults}
    if row is not None:
        data["id"] = row.id
        for key in defaults:
            data[key] = getattr(row, key)
    return data


def _upsert(db: Session, model, company_id: int, defaults: Mapping[str, Any], changes: Mapping[str, Any]):
    row = db.query(model).filter(model.company_id == company_id).first()
    if row is None:
        row = model(company_id=company_id, **defaults)
        db.add(row)
    for key, value in changes.items():
        if key in defaults and value is not None:
            setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return row


def get_settings(db: Session, company_id: int) -> dict[str, Any]:
    row = db.query(CompanySettings).filter(CompanySettings.company_id == company_id).first()
    return _row_to_dict(row, company_id, DEFAULT_SETTINGS)


def update_settings(db: Session, company_id: int, changes: Mapping[str, Any]) -> dict[str, Any]:
    row = _upsert(db, CompanySettings, company_id, DEFAULT_SETTINGS, changes)
    return _row_to_dict(row, company_id, DEFAULT_SETTINGS)


def get_map_settings(db: Session, company_id: int) -> dict[str, Any]:
    row = db.query(MapSettings).filter(MapSettings.company_id == company_id).first()
    return _row_to_dict(row, company_id, DEFAULT_MAP_SETTINGS)


def update_map_settings(db: Session, company_id: int, changes: Mapping[str, Any]) -> dict[str, Any]:
    row = _upsert(db, MapSettings, company_id, DEFAULT_MAP_SETTINGS, changes)
    return _row_to_dict(row, company_id, DEFAULT_MAP_SETTINGS)


def _notification_to_dict(event_type: str, row: NotificationSetting | None) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "sms_enabled": bool(row.sms_enabled) if row else False,
        "email_enabled": bool(row.email_enabled) if row else False,
        "webhook_enabled": bool(row.webhook_enabled) if row else False,
        "webhook_url": row.webhook_url if row else None,
    }


def notification_matrix(db: Session, company_id: int) -> list[dict[str, Any]]:
    rows = db.query(NotificationSetting).filter(NotificationSetting.company_id == company_id).all()
    by_event = {row.event_type: row for row in rows}
    return [_notification_to_dict(event, by_event.get(event)) for event in DEFAULT_EVENTS]


def upsert_notification(db: Session, company_id: int, payload: Mapping[str, Any]) -> dict[str, Any]:
    event_type = payload.get("event_type")
    if not event_type:
        raise ValidationError("event_type is required")

    row = (
        db.query(NotificationSetting)
        .filter(NotificationSetting.company_id == company_id, NotificationSetting.event_type == event_type)
        .first()
    )
    if row is None:
        row = NotificationSetting(company_id=company_id, event_type=event_type)
        db.add(row)
    for channel in NOTIFICATION_CHANNELS:
        setattr(row, channel, bool(payload.get(channel) or False))
    row.webhook_url = payload.get("webhook_url")
    db.commit()
    db.refresh(row)
    return {"id": row.id, "company_id": company_id, **_notification_to_dict(event_type, row)}
