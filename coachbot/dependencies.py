from typing import Optional

import redis.asyncio as redis

from coachbot.redis_client import get_redis
from coachbot.services.rate_limiter import RateLimiter


def get_redis_client() -> Optional[redis.Redis]:
    return get_redis()


def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_redis())
