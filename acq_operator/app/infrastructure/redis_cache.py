"""
Shared Redis cache (string values, TTL). No REDIS_URL -> every call is a no-op miss.
Cache failures are logged and treated as misses; callers never depend on Redis.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis.asyncio import Redis

from app.config import get_settings
from app.logging_config import get_logger

logger = get_logger(__name__)

CACHE_PREFIX = "cache:"
DEFAULT_TTL_SECONDS = 300


@asynccontextmanager
async def redis_client() -> AsyncIterator[Optional[Redis]]:
    """Short-lived client for one operation; yields None when Redis is not configured."""
    settings = get_settings()
    if not settings.redis_url:
        yield None
        return
    client = Redis.from_url(settings.redis_url, decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()


async def cache_get(key: str) -> Optional[str]:
    """Cached value or None (miss, no Redis, or Redis error)."""
    try:
        async with redis_client() as client:
            if client is None:
                return None
            return await client.get(CACHE_PREFIX + key)
    except Exception as e:
        logger.warning("redis_cache.get_failed", key=key, error=str(e))
        return None


async def cache_set(key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool:
    """True when stored."""
    try:
        async with redis_client() as client:
            if client is None:
                return False
            await client.setex(CACHE_PREFIX + key, ttl_seconds, value)
            return True
    except Exception as e:
        logger.warning("redis_cache.set_failed", key=key, error=str(e))
        return False
