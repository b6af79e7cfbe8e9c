# app/routers/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import Conflict, InternalError, InvalidCredentials
from app.models.company import Company
from app.services.credentials import generate_api_key, generate_company_code, generate_webhook_secret
from app.services.passwords import hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

COMPANY_CODE_ATTEMPTS = 5


class SignupPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


def _unused_company_code(db: Session) -> str:
    for _ in range(COMPANY_CODE_ATTEMPTS):
        code = generate_company_code()
        if db.query(Company.id).filter(Company.company_code == code).first() is None:
            return code
    raise InternalError("Could not allocate a company code")


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupPayload, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if db.query(Company.id).filter(Company.email == email).first() is not None:
        raise Conflict("An account with this email already exists")

    company = Company(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        api_key=generate_api_key(),
        webhook_secret=generate_webhook_secret(),
        company_code=_unused_company_code(db),
        plan="free",
        is_active=True,
        settings={},
    )
    db.add(company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("An account with this email already exists") from None
    db.refresh(company)

    logger.info("company signed up", extra={"tenant_id": company.id})
    return {
        "success": True,
        "message": "Account created successfully",
        "company": {
            "id": company.id,
            "name": company.name,
            "email": company.email,
            "api_key": company.api_key,
            "company_code": company.company_code,
            "plan": company.plan,
        },
    }


@router.post("/login")
def login(payload: LoginPayload, db: Session = Depends(get_db)):
    company = db.query(Company).filter(Company.email == payload.email.lower()).first()
    if company is None or not company.is_active or not verify_password(payload.password, company.password_hash):
        raise InvalidCredentials("Invalid email or password")

    return {
        "success": True,
        "company": {
            "id": company.id,
            "name": company.name,
            "email": company.email,
            "plan": company.plan,
        },
        "api_key": company.api_key,
    }
