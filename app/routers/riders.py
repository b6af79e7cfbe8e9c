from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.database import best_effort, get_db
from app.core.errors import ValidationError
from app.deps import get_current_company
from app.models.company import Company
from app.models.rider import Rider
from app.schemas.responses import pagination, rider_to_dict
from app.services.riders import (
    add_location_history,
    apply_location,
    create_rider,
    delete_rider,
    get_rider,
    import_riders,
    sync_rider,
    update_rider,
    validate_rider_status,
)

router = APIRouter(prefix="/v1/riders", tags=["riders"])


class RiderCreatePayload(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    vehicle_type: Optional[str] = None
    external_id: Optional[str] = None


class RiderUpdatePayload(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    vehicle_type: Optional[str] = None
    status: Optional[str] = None
    external_id: Optional[str] = None


class RiderLocationPayload(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    battery_level: Optional[int] = None


class RiderImportPayload(BaseModel):
    riders: Any = None
    sync_mode: str = "merge"


class RiderSyncPayload(BaseModel):
    action: Optional[str] = None
    rider: Optional[dict] = None


@router.get("")
def list_riders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    query = db.query(Rider).filter(Rider.company_id == company.id)
    if status:
        query = query.filter(Rider.status == validate_rider_status(status))
    total = query.count()
    riders = query.order_by(Rider.created_at.desc(), Rider.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "data": [rider_to_dict(rider) for rider in riders],
        "pagination": pagination(page, limit, total),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create(payload: RiderCreatePayload, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    rider = create_rider(db, company.id, payload.model_dump())
    return {"success": True, "message": "Rider created", "data": rider_to_dict(rider)}


@router.post("/import")
def import_batch(payload: RiderImportPayload, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    results = import_riders(db, company.id, payload.riders, payload.sync_mode)
    return {
        "success": True,
        "message": (
            f"Import complete: {results['created']} created, "
            f"{results['updated']} updated, {results['skipped']} skipped"
        ),
        "results": results,
    }


@router.post("/sync")
def sync(payload: RiderSyncPayload, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    action, rider = sync_rider(db, company.id, payload.action, payload.rider)
    return {
        "success": True,
        "action": action,
        "rider": rider_to_dict(rider) if rider is not None else None,
    }


@router.get("/{rider_id}")
def get_one(rider_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    return {"success": True, "data": rider_to_dict(get_rider(db, company.id, rider_id))}


@router.patch("/{rider_id}")
def patch(
    rider_id: int,
    payload: RiderUpdatePayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    rider = get_rider(db, company.id, rider_id)
    rider = update_rider(db, rider, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Rider updated", "data": rider_to_dict(rider)}


@router.delete("/{rider_id}")
def delete(rider_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    delete_rider(db, get_rider(db, company.id, rider_id))
    return {"success": True, "message": "Rider deleted"}


@router.patch("/{rider_id}/location")
def update_location(
    rider_id: int,
    payload: RiderLocationPayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    if payload.latitude is None or payload.longitude is None:
        raise ValidationError("latitude and longitude are required")

    rider = get_rider(db, company.id, rider_id)
    now = utcnow()
    apply_location(
        rider,
        latitude=payload.latitude,
        longitude=payload.longitude,
        battery_level=payload.battery_level,
        now=now,
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
        battery_level=payload.battery_level,
        now=now,
    )
    return {"success": True, "message": "Location updated", "data": rider_to_dict(rider)}
