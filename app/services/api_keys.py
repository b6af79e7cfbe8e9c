"""Company API-key authentication.

Resolution is recomputed from the database on every request; nothing about a
key is remembered between requests, so a rotated key stops working at once.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.errors import InvalidCredentials, MissingAuth
from app.models.company import Company
from app.services.credentials import generate_api_key

logger = logging.getLogger(__name__)


def extract_bearer(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise MissingAuth()
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise MissingAuth()
    return token


def authenticate_api_key(db: Session, api_key: str | None) -> Company:
    if not api_key:
        raise MissingAuth()
    company = (
        db.query(Company)
        .filter(Company.api_key == api_key, Company.is_active.is_(True))
        .first()
    )
    if company is None:
        logger.warning("api key rejected", extra={"key_prefix": api_key[:6]})
        raise InvalidCredentials("Invalid API key")
    return company


def authenticate_bearer(db: Session, authorization: str | None) -> Company:
    return authenticate_api_key(db, extract_bearer(authorization))


def rotate_api_key(db: Session, company_id: int) -> str:
    new_key = generate_api_key()
    updated = (
        db.query(Company)
        .filter(Company.id == company_id)
        .update({Company.api_key: new_key}, synchronize_session=False)
    )
    if not updated:
        raise InvalidCredentials("Invalid API key")
    db.commit()
    logger.info("api key rotated", extra={"tenant_id": company_id})
    return new_key
