"""
Fixed-window request governance.

FixedWindowRateLimiter keeps its buckets in process memory, so limits hold for a
single running instance only. RedisRateLimiter applies the same fixed window
through an atomic Redis counter for deployments with several instances.

Windows are fixed, not sliding: a burst that straddles a window boundary can see
up to twice max_requests in a short span.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    async def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool: ...

    async def retry_after_ms(self, identifier: str) -> Optional[int]: ...


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RateLimitBucket:
    count: int
    window_reset_time: float


class FixedWindowRateLimiter:
    def __init__(self, clock: Callable[[], float] = monotonic_ms):
        self._clock = clock
        self._buckets: Dict[str, RateLimitBucket] = {}

    async def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        now = self._clock()
        bucket = self._buckets.get(identifier)

        if bucket is None or now > bucket.window_reset_time:
            self._buckets[identifier] = RateLimitBucket(count=1, window_reset_time=now + window_ms)
            return True

        if bucket.count < max_requests:
            bucket.count += 1
            return True

        return False

    async def retry_after_ms(self, identifier: str) -> Optional[int]:
        bucket = self._buckets.get(identifier)
        if bucket is None:
            return None
        return max(0, int(bucket.window_reset_time - self._clock()))

    def reset(self):
        self._buckets.clear()


class RedisRateLimiter:
    """
    Fixed window shared by every instance: INCR and a first-write PEXPIRE run in
    one MULTI/EXEC pipeline, so the window starts with the first request.
    """

    def __init__(self, redis_client, key_prefix: str = "ratelimit:"):
        self._redis = redis_client
        self._key_prefix = key_prefix

    async def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        key = f"{self._key_prefix}{identifier}"
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, window_ms, nx=True)
                count, _ = await pipe.execute()
        except RedisError as e:
            logger.error(f"Redis error during rate limit check for '{identifier}': {e}", exc_info=True)
            raise DocTrustError(ErrorKind.STORAGE, "Rate limiter unavailable") from e

        return int(count) <= max_requests

    async def retry_after_ms(self, identifier: str) -> Optional[int]:
        try:
            ttl = await self._redis.pttl(f"{self._key_prefix}{identifier}")
        except RedisError as e:
            logger.error(f"Redis error reading rate limit window for '{identifier}': {e}", exc_info=True)
            raise DocTrustError(ErrorKind.STORAGE, "Rate limiter unavailable") from e
        return int(ttl) if ttl and ttl > 0 else None


async def enforce_rate_limit(limiter: RateLimiter, identifier: str, max_requests: int, window_ms: int) -> None:
    """
    Raise RATE_LIMITED with a retry hint when identifier is over its budget
    """
    if await limiter.allow(identifier, max_requests, window_ms):
        return

    retry_after = await limiter.retry_after_ms(identifier)
    logger.warning(f"Rate limit exceeded for {identifier}")
    raise DocTrustError(
        ErrorKind.RATE_LIMITED,
        "Too many requests, please retry later",
        retry_after_ms=retry_after if retry_after is not None else window_ms,
    )


def create_rate_limiter() -> RateLimiter:
    """Build the limiter selected by RATE_LIMIT_BACKEND"""
    if settings.RATE_LIMIT_BACKEND == "redis":
        logger.info("Using Redis rate limiter")
        return RedisRateLimiter(redis.from_url(settings.REDIS_URL, decode_responses=False))

    logger.info("Using in-process fixed-window rate limiter")
    return FixedWindowRateLimiter()
