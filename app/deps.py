# app/deps.py
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import INTERNAL_METRICS_TOKEN
from app.core.database import get_db
from app.core.errors import InvalidCredentials, NotFound
from app.core.request_context import set_request_context
from app.models.company import Company
from app.services.agent_auth import AgentContext, validate_session
from app.services.api_keys import authenticate_bearer

logger = logging.getLogger(__name__)


def get_current_company(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Company:
    """Resolve ``Authorization: Bearer tk_...`` to an active company."""
    company = authenticate_bearer(db, authorization)
    request.state.company_id = company.id
    set_request_context(tenant_id=str(company.id))
    return company


def get_agent_session(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> AgentContext:
    """Resolve a rider session token; expired sessions are flipped inactive here."""
    context = validate_session(db, authorization)
    request.state.company_id = context.company_id
    request.state.rider_id = context.rider_id
    set_request_context(tenant_id=str(context.company_id), rider_id=str(context.rider_id))
    return context


def require_internal_token(x_internal_token: Optional[str] = Header(default=None)) -> None:
    if not INTERNAL_METRICS_TOKEN:
        raise NotFound()
    if not x_internal_token or not hmac.compare_digest(
        x_internal_token.encode("utf-8"), INTERNAL_METRICS_TOKEN.encode("utf-8")
    ):
        raise InvalidCredentials("Invalid internal token")
