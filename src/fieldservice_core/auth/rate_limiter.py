"""Fixed-window per-tenant rate limiter.

One counter per (tenant, client address, scope) key. A bucket lives until
its window elapses; the next request then replaces it with a fresh one.
Bursts of up to 2N requests across a window boundary are accepted: the
limiter contains abuse, it does not enforce precise fairness.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Protocol
from urllib.parse import quote


@dataclass
class RateBucket:
    """Counter for one key within its current window."""

    key: str
    count: int
    window_reset_at: float

    def expired(self, now: float) -> bool:
        return now >= self.window_reset_at


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate limit check, used to render response headers."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> dict[str, str]:
        """``X-RateLimit-*`` headers, plus ``Retry-After`` on rejection."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitStore(Protocol):
    """Storage backend for rate buckets.

    The in-memory store is process-local. Multi-instance deployments need
    a shared backend (see ``RedisRateLimitStore``) for global enforcement.
    """

    async def hit(self, key: str, *, window_seconds: float, now: float) -> RateBucket:
        """Count one request against ``key`` and return the updated bucket."""
        ...

    async def sweep(self, now: float) -> int:
        """Drop buckets whose window has elapsed, return how many."""
        ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryRateLimitStore:
    """Dict-backed bucket store.

    ``hit`` has no suspension point, so under the event loop the
    read-increment is atomic. The lock covers callers on worker threads.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, RateBucket] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def get(self, key: str) -> RateBucket | None:
        return self._buckets.get(key)

    async def hit(self, key: str, *, window_seconds: float, now: float) -> RateBucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.expired(now):
                # Elapsed buckets are replaced, never incremented
                bucket = RateBucket(key=key, count=1, window_reset_at=now + window_seconds)
                self._buckets[key] = bucket
            else:
                bucket.count += 1
            return RateBucket(bucket.key, bucket.count, bucket.window_reset_at)

    async def sweep(self, now: float) -> int:
        with self._lock:
            expired = [key for key, b in self._buckets.items() if b.expired(now)]
            for key in expired:
                del self._buckets[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self.clear()


def bucket_key(tenant_id: str, client_address: str, scope: str) -> str:
    """Store key for one (tenant, address, scope) triple.

    Each part is percent-encoded before joining, so a ``:`` inside a tenant
    id, an IPv6 address or a forwarded header value cannot shift the
    boundaries and make two triples share a bucket.
    """
    parts = (tenant_id, client_address, scope)
    return ":".join(quote(part, safe="") for part in parts)


class FixedWindowRateLimiter:
    """At most ``max_requests`` per key within each ``window_seconds`` window."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        max_requests: int,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock

    async def check(
        self, tenant_id: str, client_address: str, scope: str
    ) -> RateLimitDecision:
        """Count a request and decide whether it is admitted.

        Rejected requests are counted as well; over-counting only makes
        the limiter stricter.
        """
        now = self._clock()
        bucket = await self.store.hit(
            bucket_key(tenant_id, client_address, scope),
            window_seconds=self.window_seconds,
            now=now,
        )
        allowed = bucket.count <= self.max_requests
        seconds_left = max(bucket.window_reset_at - now, 0.0)
        retry_after = 0 if allowed else min(
            max(math.ceil(seconds_left), 1), math.ceil(self.window_seconds)
        )
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - bucket.count),
            reset_at=bucket.window_reset_at,
            retry_after=retry_after,
        )

    async def cleanup(self) -> int:
        """Remove expired buckets. Called periodically by the app lifespan.

        Returns:
            Number of buckets removed.
        """
        return await self.store.sweep(self._clock())
