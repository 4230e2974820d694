from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from coachbot.services.rate_limiter import (
    WEBHOOK_SCOPE,
    RateLimiter,
    client_key_from_request,
    rate_limit_key,
)


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_denies(self, fake_redis):
        limiter = RateLimiter(fake_redis)

        decisions = [await limiter.consume("rl:test:1.2.3.4", 2, 60) for _ in range(3)]

        assert [d.allowed for d in decisions] == [True, True, False]
        assert decisions[0].remaining == 1
        assert decisions[2].retry_after_seconds == 60

    @pytest.mark.asyncio
    async def test_allowed_again_after_window(self, fake_redis):
        limiter = RateLimiter(fake_redis)
        for _ in range(3):
            await limiter.consume("rl:test:1.2.3.4", 3, 60)

        fake_redis.advance(45)
        denied = await limiter.consume("rl:test:1.2.3.4", 3, 60)
        assert not denied.allowed
        assert denied.retry_after_seconds == 15

        fake_redis.advance(15)
        allowed = await limiter.consume("rl:test:1.2.3.4", 3, 60)
        assert allowed.allowed
        assert allowed.remaining == 2

    @pytest.mark.asyncio
    async def test_scopes_and_clients_are_independent(self, fake_redis):
        limiter = RateLimiter(fake_redis)

        assert (await limiter.consume_scope(WEBHOOK_SCOPE, "a", 1, 60)).allowed
        assert (await limiter.consume_scope(WEBHOOK_SCOPE, "b", 1, 60)).allowed
        assert (await limiter.consume_scope("admin", "a", 1, 60)).allowed
        assert not (await limiter.consume_scope(WEBHOOK_SCOPE, "a", 1, 60)).allowed

    @pytest.mark.asyncio
    async def test_fails_open_on_redis_error(self):
        redis_client = Mock()
        redis_client.eval = AsyncMock(side_effect=RedisConnectionError("down"))
        limiter = RateLimiter(redis_client)

        decision = await limiter.consume("rl:test:x", 1, 60)

        assert decision.allowed

    @pytest.mark.asyncio
    async def test_fails_open_without_redis(self):
        assert (await RateLimiter(None).consume("rl:test:x", 1, 60)).allowed


class TestClientKey:
    def test_forwarded_for_first_hop(self):
        request = Mock()
        request.headers = {"x-forwarded-for": "10.0.0.1, 172.16.0.1"}
        assert client_key_from_request(request) == "10.0.0.1"

    def test_falls_back_to_peer(self):
        request = Mock()
        request.headers = {}
        request.client.host = "127.0.0.1"
        assert client_key_from_request(request) == "127.0.0.1"

    def test_key_format(self):
        assert rate_limit_key("webhook", "1.2.3.4") == "rl:webhook:1.2.3.4"
