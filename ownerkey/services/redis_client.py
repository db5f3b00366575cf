"""Redis client helper."""
from __future__ import annotations

from redis.asyncio import Redis

from ownerkey.core.config import Settings


def create_redis_client(settings: Settings) -> Redis:
    if not settings.redis_url:
        raise ValueError("REDIS_URL is required for the redis credential store")
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.store_timeout_seconds,
        socket_connect_timeout=settings.store_timeout_seconds,
    )
