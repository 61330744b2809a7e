"""
Redis Client

Process-wide async client used for real-time worker status events and the
readiness check. Configured by REDIS_URL.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def mask_redis_url(url: str) -> str:
    """Hide the password part of a Redis URL for logging."""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """Return the shared Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        # another coroutine may have initialized it while we waited
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the shared client. Called on app shutdown and after each Celery task."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
