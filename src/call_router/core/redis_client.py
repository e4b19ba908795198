"""
Redis connection handling

Redis is the only shared store of the router: idempotency records, call
locks, call state and lifecycle event streams all live there.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def create_redis_client(settings: Optional[Settings] = None) -> redis.Redis:
    """Create a pooled Redis client with bounded socket timeouts"""
    settings = settings or default_settings

    pool = redis.ConnectionPool.from_url(
        settings.redis_url,
        max_connections=100,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
    logger.info(f"Redis pool created for {settings.redis_url.split('@')[-1]}")
    return redis.Redis(connection_pool=pool)


async def close_redis_client(client: redis.Redis) -> None:
    """Close a Redis client and its connection pool"""
    await client.aclose()
    await client.connection_pool.disconnect()
