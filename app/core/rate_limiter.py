from __future__ import annotations

import hashlib
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Mapping, Optional

from app.core.config import RATE_LIMIT_PER_MINUTE, RATE_LIMIT_SCOPE_LIMITS

DEFAULT_WINDOW_SECONDS = 60
# buckets are swept for idle credentials once the table grows past this
DEFAULT_MAX_TRACKED_KEYS = 10_000


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int
    scope: str = ""


def credential_fingerprint(credential: Optional[str]) -> Optional[str]:
    """Stable short digest of an API key or session token; raw secrets are never kept."""
    credential = (credential or "").strip()
    if not credential:
        return None
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:24]


def request_scope(path: str) -> str:
    # "/v1/orders/12" -> "/v1/orders"
    parts = [part for part in path.split("/") if part]
    return "/" + "/".join(parts[:2])


class RateLimiterService(ABC):
    @abstractmethod
    def check(self, *, credential: str, path: str) -> Optional[RateLimitDecision]:
        """Count one request made with ``credential`` against the scope of ``path``.

        Returns None for anonymous requests, which are not limited here.
        """


class InMemoryRateLimiterService(RateLimiterService):
    """Sliding window per (credential fingerprint, resource scope).

    A company API key and each rider session token get separate budgets, and
    ``scope_limits`` can tighten or loosen individual resources such as
    ``/agent/location``. Counters live in process memory, so each worker
    enforces its own window.
    """

    def __init__(
        self,
        *,
        limit: int = RATE_LIMIT_PER_MINUTE,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        scope_limits: Optional[Mapping[str, int]] = None,
        max_tracked_keys: int = DEFAULT_MAX_TRACKED_KEYS,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.scope_limits = dict(RATE_LIMIT_SCOPE_LIMITS if scope_limits is None else scope_limits)
        self.max_tracked_keys = max_tracked_keys
        self._store: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()

    def limit_for(self, scope: str) -> int:
        return self.scope_limits.get(scope, self.limit)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._store)

    def check(self, *, credential: str, path: str) -> Optional[RateLimitDecision]:
        fingerprint = credential_fingerprint(credential)
        if fingerprint is None:
            return None

        scope = request_scope(path)
        limit = self.limit_for(scope)
        now = time.monotonic()
        cutoff = now - self.window_seconds

        with self._lock:
            if len(self._store) >= self.max_tracked_keys:
                self._evict_idle(cutoff)

            bucket = self._store.setdefault((fingerprint, scope), deque())
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= limit:
                retry_after = max(1, int(self.window_seconds - (now - bucket[0])))
                return RateLimitDecision(
                    allowed=False, limit=limit, remaining=0, retry_after_seconds=retry_after, scope=scope
                )

            bucket.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - len(bucket)),
                retry_after_seconds=0,
                scope=scope,
            )

    def _evict_idle(self, cutoff: float) -> None:
        idle = [key for key, bucket in self._store.items() if not bucket or bucket[-1] <= cutoff]
        for key in idle:
            del self._store[key]
