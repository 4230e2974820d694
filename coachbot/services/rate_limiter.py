"""Fixed-window rate limiter backed by a Redis Lua script."""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from fastapi import Request
from redis.exceptions import RedisError

from coachbot.logging_config import get_logger

logger = get_logger("rate_limiter")

# INCR and EXPIRE run atomically; returns {count, ttl}.
FIXED_WINDOW_LUA = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('TTL', KEYS[1])
return {current, ttl}
"""

WEBHOOK_SCOPE = "webhook"
ADMIN_SCOPE = "admin"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int


def rate_limit_key(scope: str, client: str) -> str:
    return f"rl:{scope}:{client}"


def client_key_from_request(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    def __init__(self, redis_client: Optional[redis.Redis]):
        self.redis = redis_client

    async def consume(self, key: str, max_requests: int, window_seconds: int) -> RateLimitDecision:
        if self.redis is None:
            return RateLimitDecision(allowed=True, remaining=max_requests, retry_after_seconds=0)
        try:
            count, ttl = await self.redis.eval(FIXED_WINDOW_LUA, 1, key, window_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Rate limit check failed, allowing request", extra={"context": {"key": key, "error": str(e)}})
            return RateLimitDecision(allowed=True, remaining=max_requests, retry_after_seconds=0)

        count = int(count)
        ttl = int(ttl)
        allowed = count <= max_requests
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, max_requests - count),
            retry_after_seconds=ttl if ttl > 0 else window_seconds,
        )

    async def consume_scope(
        self, scope: str, client: str, max_requests: int, window_seconds: int
    ) -> RateLimitDecision:
        decision = await self.consume(rate_limit_key(scope, client), max_requests, window_seconds)
        if not decision.allowed:
            logger.info(
                "Rate limited",
                extra={"context": {"scope": scope, "client": client, "retry_after": decision.retry_after_seconds}},
            )
        return decision
