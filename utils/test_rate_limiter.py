"""
Tests for per-API rate limiting and the quota-aware fetcher.
"""

import pytest
import asyncio
import time

import httpx

from collectors.retry_strategy import RetryConfig
from utils.errors import FatalFetchError, RetryableFetchError
from utils.rate_limiter import (
    AsyncRateLimiter,
    QuotaAwareFetcher,
    RateLimiterPool,
    get_rate_limiter,
    reset_limiters,
)


class TestAsyncRateLimiter:
    """Test AsyncRateLimiter class"""

    def test_rate_limiter_init(self):
        """AsyncRateLimiter should accept rate and period"""
        limiter = AsyncRateLimiter(rate=10, period=1)
        assert limiter.rate == 10
        assert limiter.period == 1

    @pytest.mark.asyncio
    async def test_acquire_returns_quickly_under_limit(self):
        """acquire() should return immediately when under rate limit"""
        limiter = AsyncRateLimiter(rate=100, period=1)

        start = time.monotonic()
        for _ in range(5):
            await limiter.acquire()
        elapsed = time.monotonic() - start

        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_acquire_throttles_when_exceeded(self):
        """acquire() should throttle when rate limit exceeded"""
        limiter = AsyncRateLimiter(rate=2, period=1)

        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        elapsed = time.monotonic() - start

        # Third request should wait ~0.5 seconds
        assert elapsed >= 0.3

    @pytest.mark.asyncio
    async def test_unlimited_never_throttles(self):
        """Unlimited limiter should never throttle"""
        limiter = AsyncRateLimiter(rate=None, period=1)

        start = time.monotonic()
        for _ in range(100):
            await limiter.acquire()
        elapsed = time.monotonic() - start

        assert elapsed < 0.1

    @pytest.mark.asyncio
    async def test_concurrent_acquire(self):
        """Multiple concurrent acquires should be safe"""
        limiter = AsyncRateLimiter(rate=10, period=1)
        results = []

        async def acquire_and_record(id: int):
            await limiter.acquire()
            results.append(id)

        await asyncio.gather(*(acquire_and_record(i) for i in range(5)))

        assert sorted(results) == [0, 1, 2, 3, 4]


class TestRateLimiterPool:
    """Test RateLimiterPool factory"""

    def test_pool_get_returns_same_limiter(self):
        pool = RateLimiterPool()
        assert pool.get("github") is pool.get("github")

    def test_pool_get_different_apis(self):
        pool = RateLimiterPool()
        assert pool.get("github") is not pool.get("github_search")

    def test_pool_has_api_limits(self):
        """Pool should have predefined API limits"""
        pool = RateLimiterPool()

        github = pool.get("github")
        assert (github.rate, github.period) == (5000, 3600)

        search = pool.get("github_search")
        assert (search.rate, search.period) == (30, 60)

        assert pool.get("raw_github").rate is None

    def test_pool_unknown_api_unlimited(self):
        pool = RateLimiterPool()
        assert pool.get("unknown_api").rate is None

    def test_pool_reset(self):
        pool = RateLimiterPool()
        limiter1 = pool.get("github")
        pool.reset()
        assert pool.get("github") is not limiter1

    def test_global_pool(self):
        limiter1 = get_rate_limiter("npm")
        assert get_rate_limiter("npm") is limiter1
        reset_limiters()
        assert get_rate_limiter("npm") is not limiter1


# =============================================================================
# QUOTA-AWARE FETCHER
# =============================================================================

class _Sleeps:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


def _fetcher(responses, max_retries=2, sleeps=None, now=1000.0):
    """Fetcher over a MockTransport that replays `responses` in order."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = QuotaAwareFetcher(
        client=client,
        retry_config=RetryConfig(max_retries=max_retries),
        sleep=sleeps or _Sleeps(),
        clock=lambda: now,
    )
    return fetcher, calls


class TestQuotaAwareFetcher:

    @pytest.mark.asyncio
    async def test_success_returns_response(self):
        fetcher, calls = _fetcher([httpx.Response(200, json={"items": [1]})])

        result = await fetcher.fetch("GET", "https://api.example.com/x", params={"q": "mcp"})

        assert result.ok
        assert result.json() == {"items": [1]}
        assert calls[0].url.params["q"] == "mcp"
        assert calls[0].headers["User-Agent"].startswith("ArtifactRadar")

    @pytest.mark.asyncio
    async def test_not_found_is_fatal_and_not_retried(self):
        fetcher, calls = _fetcher([httpx.Response(404)])

        result = await fetcher.fetch("GET", "https://api.example.com/missing")

        assert not result.ok
        assert isinstance(result.error, FatalFetchError)
        assert result.status_code == 404
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unprocessable_query_is_fatal(self):
        fetcher, calls = _fetcher([httpx.Response(422, json={"message": "Validation Failed"})])

        result = await fetcher.fetch("GET", "https://api.example.com/search")

        assert isinstance(result.error, FatalFetchError)
        assert result.json() is None
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retries_linearly_then_recovers(self):
        sleeps = _Sleeps()
        fetcher, calls = _fetcher(
            [httpx.Response(502), httpx.Response(503), httpx.Response(200, json=[])],
            max_retries=3,
            sleeps=sleeps,
        )

        result = await fetcher.fetch("GET", "https://api.example.com/x")

        assert result.ok
        assert len(calls) == 3
        assert sleeps.waits == [3.0, 6.0]
        assert fetcher.retry_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_to_retryable_error(self):
        sleeps = _Sleeps()
        fetcher, calls = _fetcher(
            [httpx.Response(429, headers={"Retry-After": "10"})],
            max_retries=2,
            sleeps=sleeps,
        )

        result = await fetcher.fetch("GET", "https://api.example.com/x")

        assert isinstance(result.error, RetryableFetchError)
        assert result.error.retryable
        assert len(calls) == 3
        assert sleeps.waits == [10.0, 10.0]

    @pytest.mark.asyncio
    async def test_forbidden_waits_for_reset_header(self):
        sleeps = _Sleeps()
        fetcher, _ = _fetcher(
            [
                httpx.Response(403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1030"}),
                httpx.Response(200, json={}),
            ],
            sleeps=sleeps,
            now=1000.0,
        )

        result = await fetcher.fetch("GET", "https://api.example.com/x")

        assert result.ok
        assert sleeps.waits == [32.0]

    @pytest.mark.asyncio
    async def test_low_quota_pauses_before_next_call(self):
        sleeps = _Sleeps()
        fetcher, calls = _fetcher(
            [
                httpx.Response(200, json={}, headers={"X-RateLimit-Remaining": "1", "X-RateLimit-Reset": "1030"}),
                httpx.Response(200, json={}, headers={"X-RateLimit-Remaining": "4999"}),
            ],
            sleeps=sleeps,
            now=1000.0,
        )

        await fetcher.fetch("GET", "https://api.example.com/a")
        assert sleeps.waits == []

        await fetcher.fetch("GET", "https://api.example.com/b")
        assert sleeps.waits == [32.0]
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_transport_error_becomes_retryable_result(self):
        sleeps = _Sleeps()
        fetcher, calls = _fetcher([httpx.ConnectError("refused")], max_retries=1, sleeps=sleeps)

        result = await fetcher.fetch("GET", "https://api.example.com/x")

        assert isinstance(result.error, RetryableFetchError)
        assert len(calls) == 2
        assert sleeps.waits == [3.0]

    @pytest.mark.asyncio
    async def test_empty_body_json_is_none(self):
        fetcher, _ = _fetcher([httpx.Response(204)])

        assert await fetcher.get_json("https://api.example.com/x") is None

    @pytest.mark.asyncio
    async def test_get_text_none_on_error(self):
        fetcher, _ = _fetcher([httpx.Response(404, text="nope")])

        assert await fetcher.get_text("https://api.example.com/x") is None
