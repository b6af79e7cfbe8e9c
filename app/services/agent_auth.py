"""Rider (agent) login, PIN lockout and session validation."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, case, func, null, or_
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import (
    AGENT_SESSION_TTL_DAYS,
    PIN_FIRST_USE_BOOTSTRAP,
    PIN_LOCK_MINUTES,
    PIN_MAX_ATTEMPTS,
)
from app.core.database import best_effort
from app.core.errors import AccountLocked, InvalidCredentials, InvalidPin, MissingAuth
from app.models.agent_session import AgentSession
from app.models.company import Company
from app.models.rider import Rider
from app.models.rider_credential import RiderCredential
from app.models.rider_device import RiderDevice
from app.services.activity_log import log_agent_activity
from app.services.api_keys import extract_bearer
from app.services.credentials import API_KEY_PREFIX, generate_session_token
from utils.normalize import normalize_company_code, normalize_phone

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(days=AGENT_SESSION_TTL_DAYS)
LOCK_DURATION = timedelta(minutes=PIN_LOCK_MINUTES)
EXPIRED_SESSION_MESSAGE = "Invalid or expired session. Please login again."


@dataclass(frozen=True)
class AgentContext:
    session_id: int
    rider_id: int
    company_id: int
    device_id: str


@dataclass
class DeviceInfo:
    device_id: str
    device_type: Optional[str] = None
    device_model: Optional[str] = None
    app_version: Optional[str] = None
    push_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def find_company_by_code(db: Session, company_code: str) -> Optional[Company]:
    code = normalize_company_code(company_code)
    if not code:
        return None
    return (
        db.query(Company)
        .filter(
            Company.is_active.is_(True),
            or_(
                func.upper(Company.company_code) == code,
                Company.api_key.ilike(f"{API_KEY_PREFIX}{code}%"),
            ),
        )
        .order_by(Company.id.asc())
        .first()
    )


def find_rider_by_phone(db: Session, company_id: int, phone: str) -> Optional[Rider]:
    return (
        db.query(Rider)
        .filter(Rider.company_id == company_id, Rider.phone == normalize_phone(phone))
        .order_by(Rider.id.asc())
        .first()
    )


def get_active_credential(db: Session, rider_id: int) -> Optional[RiderCredential]:
    return (
        db.query(RiderCredential)
        .filter(RiderCredential.rider_id == rider_id, RiderCredential.is_active.is_(True))
        .order_by(RiderCredential.id.desc())
        .first()
    )


# ---------------------------------------------------------------------------
# PIN lockout
# ---------------------------------------------------------------------------
def is_locked(credential: RiderCredential, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return credential.locked_until is not None and credential.locked_until > now


def register_failed_pin(db: Session, credential_id: int, now: Optional[datetime] = None) -> None:
    """Count a wrong PIN in a single UPDATE.

    The increment and the lock decision are evaluated by the database against
    the row's current values, so concurrent failures cannot lose a count. A
    failure after an elapsed lock starts a new streak.
    """
    now = now or utcnow()
    lock_elapsed = and_(RiderCredential.locked_until.isnot(None), RiderCredential.locked_until <= now)
    attempts_after = case((lock_elapsed, 1), else_=RiderCredential.login_attempts + 1)
    locked_after = case(
        (attempts_after >= PIN_MAX_ATTEMPTS, now + LOCK_DURATION),
        (lock_elapsed, null()),
        else_=RiderCredential.locked_until,
    )
    (
        db.query(RiderCredential)
        .filter(RiderCredential.id == credential_id)
        .update(
            {
                RiderCredential.login_attempts: attempts_after,
                RiderCredential.locked_until: locked_after,
                RiderCredential.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()


def clear_failed_pins(db: Session, credential_id: int, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    (
        db.query(RiderCredential)
        .filter(RiderCredential.id == credential_id)
        .update(
            {
                RiderCredential.login_attempts: 0,
                RiderCredential.locked_until: None,
                RiderCredential.last_login: now,
                RiderCredential.updated_at: now,
            },
            synchronize_session=False,
        )
    )


def verify_pin(db: Session, credential: RiderCredential, pin_code: str, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    if is_locked(credential, now):
        remaining = max(1, int((credential.locked_until - now).total_seconds() // 60) + 1)
        logger.warning(
            "agent login blocked by lock",
            extra={"rider_id": credential.rider_id, "tenant_id": credential.company_id},
        )
        raise AccountLocked(f"Account locked due to too many failed attempts. Try again in {remaining} minutes.")

    if not hmac.compare_digest(str(credential.pin_code).encode("utf-8"), str(pin_code).encode("utf-8")):
        register_failed_pin(db, credential.id, now)
        logger.warning(
            "agent login invalid pin",
            extra={"rider_id": credential.rider_id, "tenant_id": credential.company_id},
        )
        raise InvalidPin()

    clear_failed_pins(db, credential.id, now)


def set_rider_pin(db: Session, rider: Rider, pin_code: str) -> RiderCredential:
    """Create or overwrite the rider's active credential with a fresh counter."""
    credential = get_active_credential(db, rider.id)
    if credential is None:
        credential = RiderCredential(rider_id=rider.id, company_id=rider.company_id, is_active=True)
        db.add(credential)
    credential.pin_code = pin_code
    credential.login_attempts = 0
    credential.locked_until = None
    return credential


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
def deactivate_device_sessions(db: Session, device_id: str) -> int:
    return (
        db.query(AgentSession)
        .filter(AgentSession.device_id == device_id, AgentSession.is_active.is_(True))
        .update({AgentSession.is_active: False}, synchronize_session=False)
    )


def deactivate_rider_sessions(db: Session, *, rider_id: int, company_id: int) -> int:
    return (
        db.query(AgentSession)
        .filter(
            AgentSession.rider_id == rider_id,
            AgentSession.company_id == company_id,
            AgentSession.is_active.is_(True),
        )
        .update({AgentSession.is_active: False}, synchronize_session=False)
    )


def _record_device(db: Session, rider: Rider, device: DeviceInfo, now: datetime) -> None:
    row = (
        db.query(RiderDevice)
        .filter(RiderDevice.rider_id == rider.id, RiderDevice.device_id == device.device_id)
        .first()
    )
    if row is None:
        row = RiderDevice(rider_id=rider.id, company_id=rider.company_id, device_id=device.device_id)
        db.add(row)
    row.device_type = device.device_type
    row.device_model = device.device_model
    row.app_version = device.app_version
    row.push_token = device.push_token
    row.last_login = now


def _mark_rider_online(rider: Rider, now: datetime) -> None:
    rider.status = "active"
    rider.last_seen = now


def _mark_rider_offline(rider: Rider) -> None:
    rider.status = "offline"


def login(db: Session, *, company_code: str, phone: str, pin_code: str, device: DeviceInfo) -> dict[str, Any]:
    now = utcnow()

    company = find_company_by_code(db, company_code)
    if company is None:
        raise InvalidCredentials("Invalid company code")

    rider = find_rider_by_phone(db, company.id, phone)
    if rider is None:
        raise InvalidCredentials("Rider not found. Please contact your manager.")

    credential = get_active_credential(db, rider.id)
    if credential is None:
        if not PIN_FIRST_USE_BOOTSTRAP:
            raise InvalidCredentials("PIN not set. Please contact your manager.")
        credential = RiderCredential(
            rider_id=rider.id,
            company_id=company.id,
            pin_code=pin_code,
            login_attempts=0,
            last_login=now,
            is_active=True,
        )
        db.add(credential)
        logger.info("agent pin bootstrapped on first login", extra={"rider_id": rider.id, "tenant_id": company.id})
    else:
        verify_pin(db, credential, pin_code, now)

    deactivate_device_sessions(db, device.device_id)
    session = AgentSession(
        session_token=generate_session_token(),
        rider_id=rider.id,
        company_id=company.id,
        device_id=device.device_id,
        device_type=device.device_type,
        device_model=device.device_model,
        app_version=device.app_version,
        push_token=device.push_token,
        is_active=True,
        expires_at=now + SESSION_TTL,
        last_active=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)

    best_effort(db, "mark rider online", _mark_rider_online, rider, now)
    best_effort(db, "record rider device", _record_device, db, rider, device, now)
    best_effort(
        db,
        "log agent login",
        log_agent_activity,
        db,
        rider_id=rider.id,
        company_id=company.id,
        session_id=session.id,
        activity_type="login",
        data={
            "device_id": device.device_id,
            "device_type": device.device_type,
            "device_model": device.device_model,
            "app_version": device.app_version,
        },
    )

    logger.info("agent login", extra={"rider_id": rider.id, "tenant_id": company.id})
    return {
        "session": session,
        "rider": rider,
        "company": company,
    }


def validate_session(db: Session, authorization: Optional[str], now: Optional[datetime] = None) -> AgentContext:
    token = extract_bearer(authorization)
    now = now or utcnow()

    session = (
        db.query(AgentSession)
        .join(Rider, Rider.id == AgentSession.rider_id)
        .filter(AgentSession.session_token == token, AgentSession.is_active.is_(True))
        .first()
    )
    if session is None:
        raise InvalidCredentials(EXPIRED_SESSION_MESSAGE)

    if session.expires_at <= now:
        (
            db.query(AgentSession)
            .filter(AgentSession.id == session.id, AgentSession.is_active.is_(True))
            .update({AgentSession.is_active: False}, synchronize_session=False)
        )
        db.commit()
        logger.info("agent session expired", extra={"rider_id": session.rider_id, "tenant_id": session.company_id})
        raise InvalidCredentials(EXPIRED_SESSION_MESSAGE)

    context = AgentContext(
        session_id=session.id,
        rider_id=session.rider_id,
        company_id=session.company_id,
        device_id=session.device_id,
    )
    session.last_active = now
    db.commit()
    return context


def logout(db: Session, authorization: Optional[str]) -> None:
    try:
        token = extract_bearer(authorization)
    except MissingAuth:
        raise InvalidCredentials("Invalid or expired session") from None

    session = (
        db.query(AgentSession)
        .filter(AgentSession.session_token == token, AgentSession.is_active.is_(True))
        .first()
    )
    if session is None:
        raise InvalidCredentials("Invalid or expired session")

    session.is_active = False
    db.commit()

    rider = db.query(Rider).filter(Rider.id == session.rider_id).first()
    if rider is not None:
        best_effort(db, "mark rider offline", _mark_rider_offline, rider)
    best_effort(
        db,
        "log agent logout",
        log_agent_activity,
        db,
        rider_id=session.rider_id,
        company_id=session.company_id,
        session_id=session.id,
        activity_type="logout",
    )
    logger.info("agent logout", extra={"rider_id": session.rider_id, "tenant_id": session.company_id})
