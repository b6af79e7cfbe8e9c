from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock


@dataclass
class BackoffDecision:
    delay_seconds: float
    consecutive_failures: int


class TenantBackoffService(ABC):
    """Tracks consecutive outbound failures per (tenant, integration).

    Once a tenant's endpoint keeps failing, every further call waits first, so
    one broken callback URL slows only its own tenant's deliveries.
    """

    @abstractmethod
    def before_request(self, *, tenant_id: int, integration: str) -> BackoffDecision:
        """Delay to apply before the next outbound call."""

    @abstractmethod
    def register_success(self, *, tenant_id: int, integration: str) -> None:
        """Forget the failure streak."""

    @abstractmethod
    def register_failure(self, *, tenant_id: int, integration: str) -> int:
        """Extend the failure streak and return its length."""


class InMemoryTenantBackoffService(TenantBackoffService):
    def __init__(self, *, threshold: int = 3, max_backoff_seconds: float = 8.0, cooldown_seconds: float = 300.0) -> None:
        self.threshold = threshold
        self.max_backoff_seconds = max_backoff_seconds
        self.cooldown_seconds = cooldown_seconds
        self._failures: dict[tuple[int, str], int] = {}
        self._last_failure_at: dict[tuple[int, str], float] = {}
        self._lock = Lock()

    def before_request(self, *, tenant_id: int, integration: str) -> BackoffDecision:
        key = (tenant_id, integration)
        with self._lock:
            last_failure = self._last_failure_at.get(key)
            if last_failure is not None and time.monotonic() - last_failure > self.cooldown_seconds:
                # streak is stale; the endpoint gets a clean slate
                self._failures.pop(key, None)
                self._last_failure_at.pop(key, None)

            failures = self._failures.get(key, 0)
            if failures < self.threshold:
                return BackoffDecision(delay_seconds=0.0, consecutive_failures=failures)

            delay = min(2 ** (failures - self.threshold), self.max_backoff_seconds)
            return BackoffDecision(delay_seconds=float(delay), consecutive_failures=failures)

    def register_success(self, *, tenant_id: int, integration: str) -> None:
        key = (tenant_id, integration)
        with self._lock:
            self._failures.pop(key, None)
            self._last_failure_at.pop(key, None)

    def register_failure(self, *, tenant_id: int, integration: str) -> int:
        key = (tenant_id, integration)
        with self._lock:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
            self._last_failure_at[key] = time.monotonic()
            return failures
