"""
Idempotency Keys

Redis-backed deduplication for non-idempotent requests. A key is first
claimed with a placeholder (SET NX), then completed with the id of the
created resource, so a retried request can return the original result.
"""

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.redis import redis_key

logger = logging.getLogger(__name__)

IN_PROGRESS = "__in_progress__"


class IdempotencyKeyInProgressError(Exception):
    """Raised when a request with the same key is still being processed."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"A request with idempotency key '{key}' is already in progress")


def _redis_key(scope: str, key: str) -> str:
    return redis_key("idempotency", scope, key)


async def claim(redis: Redis | None, scope: str, key: str) -> str | None:
    """
    Claim an idempotency key.

    Args:
        redis: Redis client (None disables deduplication)
        scope: Namespace for the key, e.g. the account id
        key: Client-supplied idempotency key

    Returns:
        The stored result id if the key was already completed, else None
        (the caller now owns the key and must call complete() or release())

    Raises:
        IdempotencyKeyInProgressError: If another request holds the key
    """
    if redis is None:
        logger.warning("Redis unavailable - idempotency key ignored")
        return None

    name = _redis_key(scope, key)
    try:
        acquired = await redis.set(name, IN_PROGRESS, nx=True, ex=settings.idempotency_ttl_seconds)
        if acquired:
            return None
        existing = await redis.get(name)
    except RedisError as e:
        logger.warning(f"Idempotency check failed, continuing without it: {e}")
        return None

    if existing is None or existing == IN_PROGRESS:
        raise IdempotencyKeyInProgressError(key)
    return existing


async def complete(redis: Redis | None, scope: str, key: str, result_id: str) -> None:
    """Record the result of a claimed key."""
    if redis is None:
        return
    try:
        await redis.set(_redis_key(scope, key), result_id, ex=settings.idempotency_ttl_seconds)
    except RedisError as e:
        logger.error(f"Failed to record idempotency result for {scope}: {e}")


async def release(redis: Redis | None, scope: str, key: str) -> None:
    """Release a claimed key after the request failed, so it can be retried."""
    if redis is None:
        return
    try:
        await redis.delete(_redis_key(scope, key))
    except RedisError as e:
        logger.error(f"Failed to release idempotency key for {scope}: {e}")
