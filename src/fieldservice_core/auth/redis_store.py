"""Redis-backed rate bucket store for multi-instance deployments."""

from __future__ import annotations

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from fieldservice_core.auth.rate_limiter import RateBucket

logger = structlog.get_logger()

KEY_PREFIX = "ratelimit:"


class RedisRateLimitStore:
    """Shared fixed-window counters.

    ``INCR`` creates or bumps the counter; ``PEXPIRE NX`` sets the window
    only when the key is new, so Redis itself discards elapsed buckets and
    ``sweep`` has nothing to do. All three commands run in one MULTI
    block. Requires Redis 7 for ``PEXPIRE NX``.
    """

    def __init__(self, redis: Redis, *, key_prefix: str = KEY_PREFIX) -> None:
        self._redis = redis
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> RedisRateLimitStore:
        return cls(Redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def hit(self, key: str, *, window_seconds: float, now: float) -> RateBucket:
        window_ms = max(int(window_seconds * 1000), 1)
        redis_key = f"{self._prefix}{key}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.pexpire(redis_key, window_ms, nx=True)
            pipe.pttl(redis_key)
            count, _, ttl_ms = await pipe.execute()

        if ttl_ms is None or ttl_ms < 0:
            # Key lost its expiry (e.g. restored without TTL); bound it again
            await self._redis.pexpire(redis_key, window_ms)
            ttl_ms = window_ms

        return RateBucket(
            key=key,
            count=int(count),
            window_reset_at=now + ttl_ms / 1000,
        )

    async def sweep(self, now: float) -> int:
        return 0

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            logger.warning("rate_limit_store_ping_failed", error=type(e).__name__)
            return False

    async def close(self) -> None:
        await self._redis.aclose()
