from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import ValidationError
from app.deps import get_current_company
from app.models.company import Company
from app.schemas.responses import company_to_dict
from app.services.api_keys import rotate_api_key

router = APIRouter(prefix="/v1/company", tags=["company"])


class CompanyUpdatePayload(BaseModel):
    name: Optional[str] = None
    webhook_secret: Optional[str] = None
    settings: Optional[dict[str, Any]] = None


@router.get("")
def read_company(company: Company = Depends(get_current_company)):
    return {"success": True, "data": company_to_dict(company, include_secrets=True)}


@router.patch("")
def update_company(
    payload: CompanyUpdatePayload,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("name cannot be empty")

    for key, value in changes.items():
        setattr(company, key, value if key != "settings" else dict(value or {}))
    db.commit()
    db.refresh(company)
    return {"success": True, "data": company_to_dict(company, include_secrets=True)}


@router.post("/regenerate-key")
def regenerate_key(company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    new_key = rotate_api_key(db, company.id)
    return {
        "success": True,
        "message": "API key regenerated successfully",
        "data": {"api_key": new_key},
    }
