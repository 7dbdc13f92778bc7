"""
Redis cache layer — async Redis client for cross-process claims.

Provides:
    • Lazy async connection
    • ``cache_claim`` — atomic SET NX EX used as a time-boxed uniqueness
      token (one alert per zone per dedup window across processes)
    • ``cache_release`` — give a claim back when the guarded write failed
    • ``cache_ping`` — health probe

All helpers degrade gracefully: when Redis is unreachable they return
``None`` / ``False`` and log a warning, and callers fall back to their
in-process behaviour.

Usage:
    from crowdwatch.app.core.cache import cache_claim

    claimed = await cache_claim("dedup:evt-1:zone-a:congestion", ttl=1800)
    if claimed is False:
        ...  # another process holds the window
"""

from __future__ import annotations

import logging
from typing import Optional

from crowdwatch.app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy Redis client — initialised on first use
_redis_client = None


async def _get_redis():
    """Get or create async Redis client."""
    global _redis_client
    if _redis_client is None:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as e:
            logger.warning("Redis unavailable: %s — distributed claims disabled", e)
            return None
    return _redis_client


async def cache_claim(key: str, ttl: int) -> Optional[bool]:
    """
    Atomically claim ``key`` for ``ttl`` seconds.

    Returns
    -------
    True
        The claim was acquired.
    False
        Someone else holds the key.
    None
        Redis is unavailable; the caller decides how to proceed.
    """
    client = await _get_redis()
    if not client:
        return None
    try:
        acquired = await client.set(key, "1", nx=True, ex=max(int(ttl), 1))
        return bool(acquired)
    except Exception as e:
        logger.warning("Cache CLAIM error for %s: %s", key, e)
        return None


async def cache_release(key: str) -> bool:
    """Release a claim taken with ``cache_claim``."""
    client = await _get_redis()
    if not client:
        return False
    try:
        await client.delete(key)
        return True
    except Exception as e:
        logger.warning("Cache RELEASE error for %s: %s", key, e)
        return False


async def cache_ping() -> bool:
    """True if Redis answers a PING."""
    client = await _get_redis()
    if not client:
        return False
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Cache PING error: %s", e)
        return False


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
