from typing import Optional

import redis.asyncio as redis

from coachbot.config import settings

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Process-wide Redis client; created lazily, no connection until first use."""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
