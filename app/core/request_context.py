from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_TENANT_ID_CTX: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_RIDER_ID_CTX: ContextVar[str | None] = ContextVar("rider_id", default=None)


def set_request_context(
    *, request_id: str | None = None, tenant_id: str | None = None, rider_id: str | None = None
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if tenant_id is not None:
        _TENANT_ID_CTX.set(tenant_id)
    if rider_id is not None:
        _RIDER_ID_CTX.set(rider_id)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_tenant_id() -> str | None:
    return _TENANT_ID_CTX.get()


def get_rider_id() -> str | None:
    return _RIDER_ID_CTX.get()


def snapshot_request_context() -> dict[str, str | None]:
    """Copy of the current ids, for work that outlives the request (background tasks)."""
    return {
        "request_id": get_request_id(),
        "tenant_id": get_tenant_id(),
        "rider_id": get_rider_id(),
    }


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _TENANT_ID_CTX.set(None)
    _RIDER_ID_CTX.set(None)
