"""API error taxonomy and the handlers that render it.

Every failure leaves the API as ``{"success": false, "error": "<message>"}``.
Route handlers and dependencies raise the subclasses below; anything else that
escapes a handler is logged with its traceback and returned as a generic 500.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Internal server error"


class APIException(HTTPException):
    """Base class for application errors with a default status and message."""

    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Bad request"
    headers = None

    def __init__(self, detail: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        super().__init__(
            status_code=self.status_code,
            detail=detail if detail is not None else self.detail,
            headers=headers if headers is not None else self.headers,
        )


class MissingAuth(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Missing or invalid authorization header"


class InvalidCredentials(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid credentials"


class InvalidPin(InvalidCredentials):
    detail = "Invalid PIN code"


class AccountLocked(APIException):
    status_code = status.HTTP_423_LOCKED
    detail = "Account is temporarily locked. Try again later."


class ValidationError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid request"


class NotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Not found"


class InvalidTransition(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid status transition"


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    detail = "Resource already exists"


class UpstreamFailure(APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "Upstream service failed"


class InternalError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = GENERIC_ERROR_MESSAGE


def error_body(message: str) -> dict:
    return {"success": False, "error": message}


async def _http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location)
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body(message))


async def _database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(
        "database error",
        extra={"endpoint": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=500, content=error_body(GENERIC_ERROR_MESSAGE))


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled error",
        extra={"endpoint": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=500, content=error_body(GENERIC_ERROR_MESSAGE))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, _database_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
