from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.metrics import request_metrics
from app.deps import require_internal_token

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"], dependencies=[Depends(require_internal_token)])


@router.get("")
def metrics_snapshot():
    return {"endpoints": request_metrics.snapshot(), "tenants": request_metrics.snapshot_per_tenant()}


@router.get("/tenants")
def tenant_metrics():
    return {"tenants": request_metrics.snapshot_per_tenant()}
