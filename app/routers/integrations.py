"""External store connections and their on-demand sync."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.clock import isoformat
from app.core.database import get_db
from app.core.errors import NotFound, ValidationError
from app.deps import get_current_company
from app.models.company import Company
from app.models.external_integration import INTEGRATION_TYPES, ExternalIntegration
from app.services.credentials import generate_webhook_secret, mask_secret
from app.services.integration_sync import DEFAULT_ENDPOINTS, run_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/settings/integrations", tags=["integrations"])

ENDPOINT_FIELDS = ("riders_endpoint", "orders_endpoint", "customers_endpoint")
UPDATABLE_FIELDS = (
    "name",
    "api_url",
    "api_key",
    "api_secret",
    "sync_riders",
    "sync_orders",
    "sync_customers",
    "sync_interval_minutes",
    "riders_endpoint",
    "orders_endpoint",
    "customers_endpoint",
    "is_active",
)


class IntegrationCreatePayload(BaseModel):
    integration_type: Optional[str] = None
    name: Optional[str] = None
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    sync_riders: bool = True
    sync_orders: bool = True
    sync_customers: bool = True
    sync_interval_minutes: int = 5
    riders_endpoint: Optional[str] = None
    orders_endpoint: Optional[str] = None
    customers_endpoint: Optional[str] = None


class IntegrationUpdatePayload(BaseModel):
    name: Optional[str] = None
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    sync_riders: Optional[bool] = None
    sync_orders: Optional[bool] = None
    sync_customers: Optional[bool] = None
    sync_interval_minutes: Optional[int] = None
    riders_endpoint: Optional[str] = None
    orders_endpoint: Optional[str] = None
    customers_endpoint: Optional[str] = None
    is_active: Optional[bool] = None


def integration_to_dict(integration: ExternalIntegration) -> dict:
    return {
        "id": integration.id,
        "company_id": integration.company_id,
        "integration_type": integration.integration_type,
        "name": integration.name,
        "api_url": integration.api_url,
        "api_key": mask_secret(integration.api_key),
        "api_secret": mask_secret(integration.api_secret, visible=0),
        "webhook_secret": mask_secret(integration.webhook_secret),
        "sync_riders": integration.sync_riders,
        "sync_orders": integration.sync_orders,
        "sync_customers": integration.sync_customers,
        "sync_interval_minutes": integration.sync_interval_minutes,
        "riders_endpoint": integration.riders_endpoint,
        "orders_endpoint": integration.orders_endpoint,
        "customers_endpoint": integration.customers_endpoint,
        "is_active": integration.is_active,
        "last_sync_at": isoformat(integration.last_sync_at),
        "last_sync_status": integration.last_sync_status,
        "last_sync_error": integration.last_sync_error,
        "total_riders_synced": integration.total_riders_synced,
        "total_orders_synced": integration.total_orders_synced,
        "total_customers_synced": integration.total_customers_synced,
        "created_at": isoformat(integration.created_at),
        "updated_at": isoformat(integration.updated_at),
    }


def _get_integration(db: Session, company_id: int, integration_id: int) -> ExternalIntegration:
    integration = (
        db.query(ExternalIntegration)
        .filter(ExternalIntegration.id == integration_id, ExternalIntegration.company_id == company_id)
        .first()
    )
    if integration is None:
        raise NotFound("Integration not found")
    return integration


def _clean_url(value: str) -> str:
    return value.strip().rstrip("/")


@router.get("")
def list_integrations(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    rows = (
        db.query(ExternalIntegration)
        .filter(ExternalIntegration.company_id == company.id)
        .order_by(ExternalIntegration.created_at.desc(), ExternalIntegration.id.desc())
        .all()
    )
    return {"success": True, "integrations": [integration_to_dict(row) for row in rows]}


@router.post("")
def create_integration(
    payload: IntegrationCreatePayload,
    request: Request,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    if not payload.integration_type or not payload.name or not payload.api_url:
        raise ValidationError("integration_type, name, and api_url are required")
    if payload.integration_type not in INTEGRATION_TYPES:
        raise ValidationError(f"integration_type must be one of: {', '.join(INTEGRATION_TYPES)}")

    defaults = DEFAULT_ENDPOINTS.get(payload.integration_type, {})
    endpoints = {field: getattr(payload, field) or defaults.get(field) for field in ENDPOINT_FIELDS}
    webhook_secret = generate_webhook_secret(24)

    integration = ExternalIntegration(
        company_id=company.id,
        integration_type=payload.integration_type,
        name=payload.name,
        api_url=_clean_url(payload.api_url),
        api_key=payload.api_key,
        api_secret=payload.api_secret,
        webhook_secret=webhook_secret,
        sync_riders=payload.sync_riders,
        sync_orders=payload.sync_orders,
        sync_customers=payload.sync_customers,
        sync_interval_minutes=payload.sync_interval_minutes,
        **endpoints,
    )
    db.add(integration)
    db.commit()
    db.refresh(integration)
    logger.info("integration created", extra={"tenant_id": company.id, "integration": integration.integration_type})

    return {
        "success": True,
        "message": "Integration created successfully",
        "integration": integration_to_dict(integration),
        "webhook_url": str(request.base_url).rstrip("/") + f"/webhooks/{integration.integration_type}",
        # shown once; reads are masked afterwards
        "webhook_secret": webhook_secret,
    }


@router.get("/{integration_id}")
def get_integration(integration_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    return {"success": True, "integration": integration_to_dict(_get_integration(db, company.id, integration_id))}


@router.put("/{integration_id}")
def update_integration(
    integration_id: int,
    payload: IntegrationUpdatePayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    integration = _get_integration(db, company.id, integration_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in UPDATABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "api_url":
            if not value:
                raise ValidationError("api_url cannot be empty")
            value = _clean_url(value)
        setattr(integration, field, value)
    db.commit()
    db.refresh(integration)
    return {
        "success": True,
        "message": "Integration updated successfully",
        "integration": integration_to_dict(integration),
    }


@router.delete("/{integration_id}")
def delete_integration(
    integration_id: int,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    db.delete(_get_integration(db, company.id, integration_id))
    db.commit()
    return {"success": True, "message": "Integration deleted successfully"}


@router.post("/{integration_id}/sync")
def sync_integration(
    integration_id: int,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    report = run_sync(db, _get_integration(db, company.id, integration_id))
    return {
        "success": True,
        "message": f"Sync completed in {report.duration_ms}ms",
        "status": report.status,
        "results": report.results(),
        "errors": report.errors,
    }
