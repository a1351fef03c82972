"""
Redis client, async singleton.

Used for reconciliation worker leases. Reads REDIS_URL from settings
(default: redis://localhost:6379/0).
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock: asyncio.Lock | None = None


def _mask_redis_url(url: str) -> str:
    """Hide the password in REDIS_URL for logs (redis://:****@host:6379)"""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


def _get_init_lock() -> asyncio.Lock:
    # Created lazily so Celery tasks, each with a fresh event loop, get their own lock
    global _init_lock
    if _init_lock is None:
        _init_lock = asyncio.Lock()
    return _init_lock


async def get_redis() -> aioredis.Redis:
    """Return the shared Redis client (async, connection pool)"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _get_init_lock():
        # Re-check after acquiring the lock, a concurrent caller may have initialized it
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection, called on app shutdown and after Celery tasks"""
    global _redis_client, _init_lock
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
    _init_lock = None
