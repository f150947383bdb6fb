from __future__ import annotations

import redis.asyncio as redis

from gateway.core.settings import Settings


def get_redis_client(settings: Settings) -> redis.Redis:
    """Return a pooled async Redis client for the configured DSN."""

    pool = redis.ConnectionPool.from_url(
        str(settings.redis_url),
        max_connections=settings.redis_max_connections,
        decode_responses=False,
    )
    return redis.Redis(connection_pool=pool)
