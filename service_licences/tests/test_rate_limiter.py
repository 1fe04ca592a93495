"""
Unit tests for the public route rate limiter.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.errors import RateLimitError
from shared.metrics import MetricsCollector
from service_licences.app.caching import CacheStore, InMemoryBackend, RedisBackend
from service_licences.app.ratelimit import FixedWindowRateLimiter, RateLimitGuard


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def rate_limiter(self, clock):
        return FixedWindowRateLimiter(limit=3, window_seconds=60, clock=clock)

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, rate_limiter):
        results = [await rate_limiter.check("10.0.0.1") for _ in range(3)]

        assert all(result["allowed"] for result in results)
        assert [result["remaining"] for result in results] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_rejects_over_limit(self, rate_limiter, clock):
        for _ in range(3):
            await rate_limiter.check("10.0.0.1")
        clock.now = 15

        result = await rate_limiter.check("10.0.0.1")

        assert result["allowed"] is False
        assert result["retry_after"] == 45

    @pytest.mark.asyncio
    async def test_window_resets(self, rate_limiter, clock):
        for _ in range(4):
            await rate_limiter.check("10.0.0.1")
        clock.now = 60

        assert (await rate_limiter.check("10.0.0.1"))["allowed"] is True

    @pytest.mark.asyncio
    async def test_clients_are_independent(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check("10.0.0.1")

        assert (await rate_limiter.check("10.0.0.2"))["allowed"] is True

    @pytest.mark.asyncio
    async def test_reset(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check("10.0.0.1")
        await rate_limiter.reset("10.0.0.1")

        assert (await rate_limiter.check("10.0.0.1"))["allowed"] is True

    @pytest.mark.asyncio
    async def test_counts_in_the_shared_store(self, clock):
        store = CacheStore(InMemoryBackend(clock=clock))
        replica_a = FixedWindowRateLimiter(limit=2, window_seconds=60, store=store, clock=clock)
        replica_b = FixedWindowRateLimiter(limit=2, window_seconds=60, store=store, clock=clock)

        await replica_a.check("10.0.0.1")
        await replica_b.check("10.0.0.1")

        assert (await replica_a.check("10.0.0.1"))["allowed"] is False


class TestRedisCounting:
    """Test cases for counting through the Redis backend."""

    @pytest.fixture
    def client(self):
        client = AsyncMock()
        client.ping.return_value = True
        return client

    @pytest.mark.asyncio
    async def test_first_hit_sets_window_expiry(self, client):
        backend = RedisBackend("redis://cache:6379/0", client=client)
        await backend.connect()
        client.incr.return_value = 1
        rate_limiter = FixedWindowRateLimiter(limit=5, window_seconds=60, store=CacheStore(backend))

        result = await rate_limiter.check("10.0.0.1")

        assert result["allowed"] is True
        client.incr.assert_awaited_once_with("rate_limit:10.0.0.1")
        client.expire.assert_awaited_once_with("rate_limit:10.0.0.1", 60)

    @pytest.mark.asyncio
    async def test_over_limit_uses_remaining_ttl(self, client):
        backend = RedisBackend("redis://cache:6379/0", client=client)
        await backend.connect()
        client.incr.return_value = 6
        client.ttl.return_value = 42
        rate_limiter = FixedWindowRateLimiter(limit=5, window_seconds=60, store=CacheStore(backend))

        result = await rate_limiter.check("10.0.0.1")

        assert result["allowed"] is False
        assert result["retry_after"] == 42

    @pytest.mark.asyncio
    async def test_degraded_redis_falls_back_to_local_counter(self, client):
        backend = RedisBackend("redis://cache:6379/0", client=client)
        await backend.connect()
        client.incr.side_effect = ConnectionError("down")
        rate_limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, store=CacheStore(backend))

        first = await rate_limiter.check("10.0.0.1")
        second = await rate_limiter.check("10.0.0.1")

        assert first["allowed"] is True
        assert second["allowed"] is False


class TestRateLimitGuard:
    """Test cases for RateLimitGuard."""

    @pytest.fixture
    def mock_request(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "127.0.0.1"
        request.url.path = "/api/v1/businesses"
        return request

    @pytest.mark.asyncio
    async def test_rejection_carries_headers(self, mock_request):
        metrics = MetricsCollector("licences-test")
        guard = RateLimitGuard(FixedWindowRateLimiter(limit=1, window_seconds=60), metrics=metrics)
        await guard.check_request(mock_request)

        with pytest.raises(RateLimitError) as exc_info:
            await guard.check_request(mock_request)

        headers = exc_info.value.headers
        assert headers["X-RateLimit-Limit"] == "1"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert int(headers["Retry-After"]) > 0
        rejections = metrics.registry.get_sample_value(
            "rate_limit_rejections_total", {"endpoint": "/api/v1/businesses"}
        )
        assert rejections == 1.0

    @pytest.mark.asyncio
    async def test_forwarded_for_is_ignored_by_default(self, mock_request):
        guard = RateLimitGuard(FixedWindowRateLimiter(limit=1, window_seconds=60))

        mock_request.headers = {"X-Forwarded-For": "203.0.113.1"}
        await guard.check_request(mock_request)
        mock_request.headers = {"X-Forwarded-For": "203.0.113.2", "X-Real-IP": "203.0.113.3"}

        with pytest.raises(RateLimitError):
            await guard.check_request(mock_request)

    def test_forwarded_for_honoured_when_trusted(self, mock_request):
        guard = RateLimitGuard(FixedWindowRateLimiter(limit=1, window_seconds=60), trust_forwarded_for=True)
        mock_request.headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

        assert guard._get_client_id(mock_request) == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_fails_open(self, mock_request):
        rate_limiter = MagicMock()
        rate_limiter.limit = 10
        rate_limiter.check = AsyncMock(side_effect=RuntimeError("broken"))

        result = await RateLimitGuard(rate_limiter).check_request(mock_request)

        assert result["allowed"] is True
