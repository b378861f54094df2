"""Shared Redis client for the per-IP rate limiter.

Learn: Redis holds nothing but short-lived counters
(microlearn:rl:<ip>:<bucket>:<minute>, expiring after two minutes), so
losing it loses no user data. It is connected once in the app lifespan.
When it is unreachable there, get_redis() raises RuntimeError and
RateLimitMiddleware lets every request through. /health opens its own
short-lived connection instead of borrowing this one, so it reports
Redis as it is now rather than as it was at startup.
"""

from typing import Optional

import redis.asyncio as aioredis

from microlearn.config import settings

# Set by init_redis() in the lifespan; None means rate limiting is off
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Fail at startup, not on the first rate-limited request
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
