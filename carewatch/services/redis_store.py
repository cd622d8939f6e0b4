"""
Redis connection for cross-instance cooldown state.

Graceful degradation: callers treat a None client as "Redis unavailable"
and fall back to process-local state.
"""

import redis.asyncio as aioredis
import structlog

from carewatch.config import settings

logger = structlog.get_logger(__name__)

_redis = None


async def get_redis():
    """Lazy-init Redis connection."""
    global _redis
    if _redis is None:
        try:
            client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
            )
            await client.ping()
            _redis = client
            logger.info("redis_connected")
        except Exception as e:
            logger.warning("redis_unavailable", error=str(e))
            _redis = None
    return _redis


async def close_redis():
    """Close Redis connection."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
