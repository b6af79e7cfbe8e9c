from __future__ import annotations

import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

import app.deps as deps
import app.main as main
from app.core.logging_setup import JsonFormatter
from app.core.metrics import EndpointMetric, InMemoryRequestMetrics
from app.core.rate_limiter import InMemoryRateLimiterService, credential_fingerprint, request_scope
from app.middleware.observability import ObservabilityMiddleware
from app.middleware.rate_limit import CredentialRateLimitMiddleware
from app.routers.internal_metrics import router as internal_metrics_router
from app.services.tenant_backoff import InMemoryTenantBackoffService
from tests.fixtures_data import ACME_API_KEY, build_client, build_session


def test_rate_limiter_blocks_after_limit_per_credential_and_scope():
    limiter = InMemoryRateLimiterService(limit=2, window_seconds=60, scope_limits={})

    first = limiter.check(credential=ACME_API_KEY, path="/v1/orders")
    second = limiter.check(credential=ACME_API_KEY, path="/v1/orders/7")
    third = limiter.check(credential=ACME_API_KEY, path="/v1/orders")
    other_scope = limiter.check(credential=ACME_API_KEY, path="/v1/riders")
    other_key = limiter.check(credential="tk_other", path="/v1/orders")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert third.scope == "/v1/orders"
    assert third.retry_after_seconds >= 1
    assert other_scope.allowed and other_key.allowed


def test_rate_limiter_ignores_anonymous_requests_and_applies_scope_limits():
    limiter = InMemoryRateLimiterService(limit=5, scope_limits={"/agent/location": 1})

    anonymous = limiter.check(credential="  ", path="/v1/orders")
    first_ping = limiter.check(credential="f" * 64, path="/agent/location")
    second_ping = limiter.check(credential="f" * 64, path="/agent/location")
    orders = limiter.check(credential="f" * 64, path="/agent/orders")

    assert anonymous is None
    assert (first_ping.allowed, first_ping.limit) == (True, 1)
    assert second_ping.allowed is False
    assert (orders.allowed, orders.limit) == (True, 5)


def test_rate_limiter_evicts_idle_credentials(monkeypatch):
    limiter = InMemoryRateLimiterService(limit=5, window_seconds=60, scope_limits={}, max_tracked_keys=2)
    clock = iter([100.0, 101.0, 500.0])
    monkeypatch.setattr("app.core.rate_limiter.time.monotonic", lambda: next(clock))

    limiter.check(credential="tk_one", path="/v1/orders")
    limiter.check(credential="tk_two", path="/v1/orders")
    limiter.check(credential="tk_three", path="/v1/orders")

    assert limiter.tracked_keys() == 1


def test_credential_fingerprint_never_keeps_the_raw_secret():
    fingerprint = credential_fingerprint(ACME_API_KEY)

    assert len(fingerprint) == 24
    assert ACME_API_KEY not in fingerprint
    assert credential_fingerprint(ACME_API_KEY) == fingerprint
    assert credential_fingerprint(None) is None


def test_rate_limit_middleware_returns_429_per_credential():
    app = FastAPI()
    app.add_middleware(CredentialRateLimitMiddleware, rate_limiter=InMemoryRateLimiterService(limit=1, scope_limits={}))

    @app.get("/v1/orders")
    def orders():
        return {"success": True}

    client = TestClient(app)
    headers = {"Authorization": f"Bearer {ACME_API_KEY}"}

    ok = client.get("/v1/orders", headers=headers)
    limited = client.get("/v1/orders", headers=headers)
    anonymous = [client.get("/v1/orders") for _ in range(3)]
    other_key = client.get("/v1/orders", headers={"x-api-key": "tk_other"})

    assert ok.status_code == 200
    assert ok.headers["X-RateLimit-Limit"] == "1"
    assert limited.status_code == 429
    assert limited.json() == {"success": False, "error": "Too many requests"}
    assert "Retry-After" in limited.headers
    assert all(response.status_code == 200 for response in anonymous)
    assert other_key.status_code == 200


def test_scope_groups_by_resource():
    assert request_scope("/v1/orders/12") == "/v1/orders"
    assert request_scope("/agent/orders/3") == "/agent/orders"
    assert request_scope("/health") == "/health"


def test_endpoint_metric_aggregates():
    metric = EndpointMetric()
    metric.record(200, 10.0)
    metric.record(404, 20.0)
    metric.record(503, 30.0)

    assert metric.as_dict() == {
        "total_requests": 3,
        "avg_duration_ms": 20.0,
        "client_errors": 1,
        "server_errors": 1,
    }


def test_request_metrics_snapshot_per_endpoint_and_tenant():
    metrics = InMemoryRequestMetrics()
    metrics.observe("/v1/orders", "GET", 200, 5.0, tenant_id="1")
    metrics.observe("/v1/orders", "GET", 500, 15.0, tenant_id="2")

    assert metrics.snapshot()["GET /v1/orders"]["total_requests"] == 2
    assert metrics.snapshot_per_tenant()["2"]["server_errors"] == 1

    metrics.reset()
    assert metrics.snapshot() == {}


def test_observability_middleware_sets_request_id():
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)

    @app.get("/ping")
    def ping():
        return {"ok": True}

    client = TestClient(app)

    echoed = client.get("/ping", headers={"X-Request-ID": "req-123"})
    generated = client.get("/ping")

    assert echoed.headers["X-Request-ID"] == "req-123"
    assert len(generated.headers["X-Request-ID"]) == 36


def test_backoff_kicks_in_after_threshold_and_resets_on_success():
    backoff = InMemoryTenantBackoffService(threshold=2, max_backoff_seconds=4.0)

    assert backoff.before_request(tenant_id=1, integration="hook").delay_seconds == 0.0
    for _ in range(4):
        backoff.register_failure(tenant_id=1, integration="hook")
    delayed = backoff.before_request(tenant_id=1, integration="hook")
    other_tenant = backoff.before_request(tenant_id=2, integration="hook")
    backoff.register_success(tenant_id=1, integration="hook")

    assert delayed.delay_seconds == 4.0
    assert delayed.consecutive_failures == 4
    assert other_tenant.delay_seconds == 0.0
    assert backoff.before_request(tenant_id=1, integration="hook").consecutive_failures == 0


def test_internal_metrics_hidden_without_token(monkeypatch):
    monkeypatch.setattr(deps, "INTERNAL_METRICS_TOKEN", "")
    client = build_client(build_session(), internal_metrics_router)

    response = client.get("/internal/metrics")

    assert response.status_code == 404


def test_internal_metrics_requires_matching_token(monkeypatch):
    monkeypatch.setattr(deps, "INTERNAL_METRICS_TOKEN", "ops-token")
    client = build_client(build_session(), internal_metrics_router)

    wrong = client.get("/internal/metrics", headers={"x-internal-token": "nope"})
    ok = client.get("/internal/metrics", headers={"x-internal-token": "ops-token"})
    tenants = client.get("/internal/metrics/tenants", headers={"x-internal-token": "ops-token"})

    assert wrong.status_code == 401
    assert set(ok.json()) == {"endpoints", "tenants"}
    assert "tenants" in tenants.json()


def test_json_formatter_masks_credentials():
    record = logging.LogRecord(
        name="app.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="rejected %s",
        args=(ACME_API_KEY,),
        exc_info=None,
    )
    record.tenant_id = "7"
    record.event = "order.created"

    payload = json.loads(JsonFormatter("%(message)s").format(record))

    assert payload["message"] == "rejected tk_***"
    assert payload["tenant_id"] == "7"
    assert payload["event"] == "order.created"


def test_app_starts_and_serves_health(monkeypatch):
    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        health = client.get("/health")
        root = client.get("/")

    assert health.status_code == 200
    assert health.json() == {"status": "ok"}
    assert "X-Request-ID" in health.headers
    assert root.json()["name"] == "Fleet Dispatch API"


def test_unknown_route_uses_error_envelope(monkeypatch):
    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/v1/does-not-exist")

    assert response.status_code == 404
    assert response.json()["success"] is False
