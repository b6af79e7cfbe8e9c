from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.errors import error_body
from app.core.rate_limiter import InMemoryRateLimiterService, RateLimiterService

logger = logging.getLogger(__name__)


class CredentialRateLimitMiddleware(BaseHTTPMiddleware):
    """Limits requests per bearer credential (API key, session token or x-api-key).

    Anonymous requests pass through; login endpoints are protected by the PIN lockout instead.
    """

    def __init__(self, app, *, rate_limiter: RateLimiterService | None = None) -> None:
        super().__init__(app)
        self._rate_limiter = rate_limiter or InMemoryRateLimiterService()

    async def dispatch(self, request: Request, call_next):
        decision = self._rate_limiter.check(credential=request_credential(request), path=request.url.path)
        if decision is None:
            return await call_next(request)

        if not decision.allowed:
            logger.warning("rate limit exceeded", extra={"endpoint": decision.scope, "status_code": 429})
            return JSONResponse(
                status_code=429,
                content=error_body("Too many requests"),
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": str(decision.remaining),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


def request_credential(request: Request) -> str:
    raw = request.headers.get("x-api-key") or ""
    if not raw:
        authorization = request.headers.get("Authorization") or ""
        if authorization.startswith("Bearer "):
            raw = authorization[len("Bearer "):]
    return raw.strip()
