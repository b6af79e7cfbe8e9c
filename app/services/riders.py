from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.errors import Conflict, NotFound, ValidationError
from app.models.location_history import LocationHistory
from app.models.rider import RIDER_STATUSES, Rider
from utils.normalize import normalize_phone

logger = logging.getLogger(__name__)

RIDER_UPDATABLE_FIELDS = ("name", "phone", "email", "vehicle_type", "status", "external_id")
IMPORT_SYNC_MODES = ("merge", "update", "skip")
SYNC_ACTIONS = ("create", "update", "delete")
MAX_IMPORT_BATCH = 500
DUPLICATE_PHONE_MESSAGE = "Rider with this phone already exists"


def get_rider(db: Session, company_id: int, rider_id: int) -> Rider:
    rider = db.query(Rider).filter(Rider.id == rider_id, Rider.company_id == company_id).first()
    if rider is None:
        raise NotFound("Rider not found")
    return rider


def find_rider_by_phone(db: Session, company_id: int, phone: Optional[str]) -> Optional[Rider]:
    if not phone:
        return None
    return (
        db.query(Rider)
        .filter(Rider.company_id == company_id, Rider.phone == phone)
        .order_by(Rider.id.asc())
        .first()
    )


def validate_rider_status(status: Any) -> str:
    if status not in RIDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(RIDER_STATUSES)}")
    return status


def _external_id(payload: dict) -> Optional[str]:
    value = payload.get("external_id") or payload.get("id")
    return str(value) if value not in (None, "") else None


def create_rider(db: Session, company_id: int, payload: dict) -> Rider:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    phone = normalize_phone(payload.get("phone"))
    if find_rider_by_phone(db, company_id, phone) is not None:
        raise Conflict(DUPLICATE_PHONE_MESSAGE)

    rider = Rider(
        company_id=company_id,
        name=name,
        phone=phone,
        email=payload.get("email") or None,
        vehicle_type=payload.get("vehicle_type") or "motorcycle",
        status="offline",
        external_id=_external_id(payload),
    )
    db.add(rider)
    db.commit()
    db.refresh(rider)
    logger.info("rider created", extra={"tenant_id": company_id, "rider_id": rider.id})
    return rider


def update_rider(db: Session, rider: Rider, changes: dict) -> Rider:
    changes = {key: value for key, value in changes.items() if key in RIDER_UPDATABLE_FIELDS}
    if "status" in changes:
        validate_rider_status(changes["status"])
    if "phone" in changes:
        changes["phone"] = normalize_phone(changes["phone"])
        other = find_rider_by_phone(db, rider.company_id, changes["phone"])
        if other is not None and other.id != rider.id:
            raise Conflict(DUPLICATE_PHONE_MESSAGE)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("name cannot be empty")

    for key, value in changes.items():
        setattr(rider, key, value)
    db.commit()
    db.refresh(rider)
    return rider


def delete_rider(db: Session, rider: Rider) -> None:
    db.delete(rider)
    db.commit()


def apply_location(
    rider: Rider,
    *,
    latitude: float,
    longitude: float,
    battery_level: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    rider.latitude = latitude
    rider.longitude = longitude
    if battery_level is not None:
        rider.battery_level = battery_level
    rider.last_seen = now or utcnow()


def add_location_history(
    db: Session,
    rider: Rider,
    *,
    latitude: float,
    longitude: float,
    speed: Optional[float] = None,
    heading: Optional[float] = None,
    battery_level: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LocationHistory:
    entry = LocationHistory(
        rider_id=rider.id,
        company_id=rider.company_id,
        latitude=latitude,
        longitude=longitude,
        speed=speed,
        heading=heading,
        battery_level=battery_level,
        recorded_at=now or utcnow(),
    )
    db.add(entry)
    return entry


# ---------------------------------------------------------------------------
# Bulk import and single-record sync from a partner system
# ---------------------------------------------------------------------------
def _import_fields(payload: dict) -> dict:
    status = payload.get("status")
    return {
        "name": payload["name"],
        "email": payload.get("email") or None,
        "vehicle_type": payload.get("vehicle_type") or "motorcycle",
        "status": status if status in RIDER_STATUSES else "offline",
        "latitude": payload.get("latitude"),
        "longitude": payload.get("longitude"),
        "external_id": _external_id(payload),
    }


def import_riders(db: Session, company_id: int, riders: Any, sync_mode: str = "merge") -> dict:
    if not isinstance(riders, list) or not riders:
        raise ValidationError("riders array is required")
    if len(riders) > MAX_IMPORT_BATCH:
        raise ValidationError(f"Maximum {MAX_IMPORT_BATCH} riders per import")
    if sync_mode not in IMPORT_SYNC_MODES:
        raise ValidationError(f"sync_mode must be one of: {', '.join(IMPORT_SYNC_MODES)}")

    results = {"created": 0, "updated": 0, "skipped": 0, "errors": []}
    for index, payload in enumerate(riders):
        payload = payload if isinstance(payload, dict) else {}
        phone = normalize_phone(payload.get("phone"))
        if not payload.get("name") or not phone:
            results["errors"].append(
                {"index": index, "phone": phone or "unknown", "error": "name and phone are required"}
            )
            results["skipped"] += 1
            continue

        existing = find_rider_by_phone(db, company_id, phone)
        if existing is not None and sync_mode == "skip":
            results["skipped"] += 1
            continue

        try:
            if existing is not None:
                for key, value in _import_fields(payload).items():
                    setattr(existing, key, value)
            else:
                db.add(Rider(company_id=company_id, phone=phone, **_import_fields(payload)))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("rider import row failed", extra={"tenant_id": company_id}, exc_info=True)
            results["errors"].append({"index": index, "phone": phone, "error": type(exc).__name__})
            results["skipped"] += 1
            continue

        results["updated" if existing is not None else "created"] += 1

    logger.info(
        "riders imported: %s created, %s updated, %s skipped",
        results["created"],
        results["updated"],
        results["skipped"],
        extra={"tenant_id": company_id},
    )
    return results


def _match_for_sync(db: Session, company_id: int, payload: dict, action: str) -> Rider:
    query = db.query(Rider).filter(Rider.company_id == company_id)
    if payload.get("external_id"):
        rider = query.filter(Rider.external_id == str(payload["external_id"])).first()
    elif payload.get("phone"):
        rider = query.filter(Rider.phone == normalize_phone(payload["phone"])).first()
    else:
        raise ValidationError(f"external_id or phone required for {action}")
    if rider is None:
        raise NotFound("Rider not found")
    return rider


def sync_rider(db: Session, company_id: int, action: Any, payload: Any) -> tuple[str, Optional[Rider]]:
    """Apply one partner-side rider change; returns ``(past-tense action, rider)``."""
    if not action or not isinstance(payload, dict):
        raise ValidationError("action and rider are required")
    if action not in SYNC_ACTIONS:
        raise ValidationError("action must be: create, update, or delete")

    if action == "create":
        if not payload.get("name") or not payload.get("phone"):
            raise ValidationError("name and phone are required for create")
        return "created", create_rider(db, company_id, payload)

    rider = _match_for_sync(db, company_id, payload, action)
    if action == "delete":
        delete_rider(db, rider)
        return "deleted", None

    changes = {}
    for key in ("name", "phone", "vehicle_type", "status"):
        if payload.get(key):
            changes[key] = payload[key]
    if "email" in payload:
        changes["email"] = payload["email"]
    return "updated", update_rider(db, rider, changes)
