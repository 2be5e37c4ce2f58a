"""
Construction helpers for the shared Redis client.

The client is created once in `create_app` and handed to the key-value
store; nothing in the package keeps a module-level connection.
"""

from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .logging_config import logger


def create_redis_client(url: str) -> Redis:
    """
    Build an asyncio Redis client with string responses. The connection
    pool connects lazily, so this never blocks or fails on its own.
    """
    return Redis.from_url(url, decode_responses=True)


async def ping_redis(redis: Redis) -> bool:
    try:
        return bool(await redis.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis(redis: Redis) -> None:
    try:
        await redis.aclose()
    except (RedisError, OSError) as exc:
        logger.warning("Error while closing Redis connection: %s", exc)


__all__ = ["close_redis", "create_redis_client", "ping_redis"]
