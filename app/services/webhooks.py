"""Outbound webhook signing and delivery, plus inbound signature checks."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from app.core.clock import utcnow
from app.core.config import WEBHOOK_MAX_ATTEMPTS, WEBHOOK_TIMEOUT_SECONDS, WEBHOOK_USER_AGENT
from app.core.request_context import clear_request_context, set_request_context
from app.services.tenant_backoff import InMemoryTenantBackoffService

logger = logging.getLogger(__name__)
_backoff_service = InMemoryTenantBackoffService()

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
SIGNATURE_PREFIX = "sha256="
INTEGRATION_NAME = "outbound_webhook"
RETRY_BASE_DELAY_SECONDS = 0.5


@dataclass(frozen=True)
class WebhookConfig:
    url: str
    secret: str
    tenant_id: Optional[int] = None


@dataclass
class WebhookResult:
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0


def sign_payload(payload: str | bytes, secret: str) -> str:
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(payload: str | bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a ``sha256=<hex>`` header against the payload in constant time."""
    if not signature or not secret:
        return False
    expected = SIGNATURE_PREFIX + sign_payload(payload, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def build_envelope(event: str, data: Mapping[str, Any]) -> str:
    envelope = {
        "event": event,
        "timestamp": utcnow().isoformat() + "Z",
        "data": data,
    }
    return json.dumps(envelope, separators=(",", ":"), default=str)


def _retryable(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def send_webhook(
    config: WebhookConfig,
    event: str,
    data: Mapping[str, Any],
    *,
    max_attempts: int = WEBHOOK_MAX_ATTEMPTS,
    sleep=time.sleep,
) -> WebhookResult:
    body = build_envelope(event, data)
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign_payload(body, config.secret),
        EVENT_HEADER: event,
        "User-Agent": WEBHOOK_USER_AGENT,
    }
    tenant_key = config.tenant_id or 0
    result = WebhookResult(success=False)

    for attempt in range(1, max_attempts + 1):
        result.attempts = attempt
        decision = _backoff_service.before_request(tenant_id=tenant_key, integration=INTEGRATION_NAME)
        delay = decision.delay_seconds or (RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 2)) if attempt > 1 else 0)
        if delay > 0:
            logger.warning(
                "webhook backoff",
                extra={
                    "tenant_id": config.tenant_id,
                    "event": event,
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "consecutive_failures": decision.consecutive_failures,
                },
            )
            sleep(delay)

        try:
            with httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
                response = client.post(config.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            _backoff_service.register_failure(tenant_id=tenant_key, integration=INTEGRATION_NAME)
            result.status_code = None
            result.error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "webhook transport error",
                extra={"tenant_id": config.tenant_id, "event": event, "url": config.url, "attempt": attempt},
            )
            continue

        result.status_code = response.status_code
        if 200 <= response.status_code < 300:
            _backoff_service.register_success(tenant_id=tenant_key, integration=INTEGRATION_NAME)
            result.success = True
            result.error = None
            logger.info(
                "webhook delivered",
                extra={
                    "tenant_id": config.tenant_id,
                    "event": event,
                    "url": config.url,
                    "status_code": response.status_code,
                    "attempt": attempt,
                },
            )
            return result

        result.error = f"HTTP {response.status_code}"
        if not _retryable(response.status_code):
            break
        _backoff_service.register_failure(tenant_id=tenant_key, integration=INTEGRATION_NAME)

    logger.error(
        "webhook dead-lettered",
        extra={
            "tenant_id": config.tenant_id,
            "event": event,
            "url": config.url,
            "status_code": result.status_code,
            "attempt": result.attempts,
            "error": result.error,
        },
    )
    return result


def dispatch_webhook(
    config: WebhookConfig,
    event: str,
    data: Mapping[str, Any],
    request_context: Optional[Mapping[str, Optional[str]]] = None,
) -> WebhookResult:
    """Background-task entry point: never raises."""
    if request_context:
        set_request_context(**request_context)
    try:
        return send_webhook(config, event, data)
    except Exception as exc:  # a delivery bug must not surface after the response
        logger.exception("webhook dispatch crashed", extra={"event": event, "url": config.url})
        return WebhookResult(success=False, error=str(exc))
    finally:
        if request_context:
            clear_request_context()
