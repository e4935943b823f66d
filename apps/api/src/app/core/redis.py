"""
Redis Configuration

Async Redis client shared by rate limiting and idempotency keys. Redis is
optional: when it is down, rate limits fall back to process memory and
idempotency keys are skipped, so admissions writes never depend on it.
"""

import logging

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

# Redis client instance
redis_client: Redis | None = None


def redis_key(*parts: object) -> str:
    """
    Build a key in the admissions namespace.

    Example:
        redis_key("idempotency", "apply:<account>", "k1")
        -> "admissions:idempotency:apply:<account>:k1"
    """
    return ":".join([settings.redis_key_prefix, *(str(part) for part in parts)])


async def init_redis() -> Redis:
    """
    Initialize Redis connection.

    Call this on application startup.
    """
    global redis_client
    redis_client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await redis_client.ping()
    return redis_client


async def get_redis() -> Redis | None:
    """
    Get Redis client instance.

    Returns None if Redis is not available. Callers must handle the None
    case (idempotency keys degrade to no deduplication).
    """
    return redis_client


async def redis_status() -> str:
    """Connection state for the readiness probe."""
    if redis_client is None:
        return "not initialized"
    try:
        await redis_client.ping()
    except (RedisError, OSError) as e:
        logger.warning(f"Redis ping failed: {e}")
        return "error"
    return "connected"


async def close_redis() -> None:
    """Close Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
