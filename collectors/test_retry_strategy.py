"""
Tests for the centralized retry strategy.
"""

import pytest
import asyncio
import httpx

from collectors.retry_strategy import (
    FailureKind,
    RetryConfig,
    classify_status,
    get_retry_after_seconds,
    is_retryable_error,
    with_retry,
)
from utils.errors import QuotaExceededError


def _status_error(status, headers=None):
    request = httpx.Request("GET", "https://example.com")
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError("HTTP error", request=request, response=response)


class _Sleeps:
    """Records waits instead of sleeping."""

    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


class TestRetryConfig:
    """Test RetryConfig dataclass"""

    def test_retry_config_defaults(self):
        """RetryConfig should have sensible defaults"""
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.backoff_base == 2.0
        assert config.backoff_max == 30.0
        assert config.jitter is True

    def test_get_wait_seconds_exponential(self):
        """get_wait_seconds should implement exponential backoff"""
        config = RetryConfig(backoff_base=2.0, jitter=False)

        assert config.get_wait_seconds(0) == 1.0
        assert config.get_wait_seconds(1) == 2.0
        assert config.get_wait_seconds(2) == 4.0

    def test_multiplier_scales_schedule(self):
        """Gemini schedule: 10s, 20s, 40s"""
        config = RetryConfig(backoff_multiplier=10.0, backoff_max=60.0, jitter=False)

        assert [config.get_wait_seconds(i) for i in range(3)] == [10.0, 20.0, 40.0]

    def test_get_wait_seconds_respects_max(self):
        """get_wait_seconds should cap at backoff_max"""
        config = RetryConfig(backoff_base=2.0, backoff_max=5.0, jitter=False)

        assert config.get_wait_seconds(10) == 5.0

    def test_jitter_stays_within_quarter(self):
        config = RetryConfig(backoff_base=2.0, jitter=True)
        for _ in range(20):
            assert 3.0 <= config.get_wait_seconds(2) <= 5.0

    def test_linear_wait(self):
        config = RetryConfig(linear_step=3.0)
        assert [config.get_linear_wait(i) for i in range(3)] == [3.0, 6.0, 9.0]

    def test_quota_wait_until_reset_plus_margin(self):
        config = RetryConfig(quota_wait_min=5.0, quota_wait_max=120.0, reset_margin=2.0)

        assert config.get_quota_wait(reset_epoch=1030.0, now=1000.0) == 32.0

    def test_quota_wait_floor_and_cap(self):
        config = RetryConfig(quota_wait_min=5.0, quota_wait_max=120.0, reset_margin=2.0)

        assert config.get_quota_wait(reset_epoch=None, now=1000.0) == 7.0
        assert config.get_quota_wait(reset_epoch=5000.0, now=1000.0) == 120.0


class TestClassifyStatus:

    def test_quota_statuses(self):
        assert classify_status(403) == FailureKind.QUOTA
        assert classify_status(429) == FailureKind.QUOTA

    def test_server_statuses(self):
        assert classify_status(500) == FailureKind.SERVER
        assert classify_status(503) == FailureKind.SERVER

    def test_fatal_statuses(self):
        for status in (400, 401, 404, 422):
            assert classify_status(status) == FailureKind.FATAL


class TestWithRetry:
    """Test with_retry async wrapper"""

    @pytest.mark.asyncio
    async def test_with_retry_success_first_try(self):
        """with_retry should return result on first success"""
        async def success_func():
            return "success"

        result = await with_retry(success_func, RetryConfig(max_retries=3))
        assert result == "success"

    @pytest.mark.asyncio
    async def test_with_retry_retries_on_error(self):
        """with_retry should retry on transient errors"""
        attempts = []
        sleeps = _Sleeps()

        async def flaky_func():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("Transient failure")
            return "success"

        config = RetryConfig(max_retries=3, jitter=False)
        result = await with_retry(flaky_func, config, sleep=sleeps)

        assert result == "success"
        assert len(attempts) == 3
        assert sleeps.waits == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_with_retry_raises_after_max_retries(self):
        """with_retry should raise after exhausting retries"""
        attempts = []

        async def always_fails():
            attempts.append(1)
            raise ConnectionError("Permanent failure")

        with pytest.raises(ConnectionError):
            await with_retry(always_fails, RetryConfig(max_retries=3), sleep=_Sleeps())

        assert len(attempts) == 4

    @pytest.mark.asyncio
    async def test_with_retry_custom_error_types(self):
        """with_retry should only retry specified error types"""
        attempts = []

        async def raises_value_error():
            attempts.append(1)
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            await with_retry(
                raises_value_error,
                RetryConfig(max_retries=3),
                retry_on=(QuotaExceededError,),
                sleep=_Sleeps(),
            )

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_with_retry_http_status_error(self):
        """with_retry should handle HTTP 5xx errors"""
        attempts = []

        async def http_error_func():
            attempts.append(1)
            if len(attempts) < 2:
                raise _status_error(500)
            return "recovered"

        result = await with_retry(http_error_func, RetryConfig(max_retries=3), sleep=_Sleeps())

        assert result == "recovered"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self):
        attempts = []
        sleeps = _Sleeps()

        async def rate_limited():
            attempts.append(1)
            if len(attempts) < 2:
                raise _status_error(429, {"Retry-After": "7"})
            return "ok"

        await with_retry(rate_limited, RetryConfig(max_retries=2, jitter=False), sleep=sleeps)

        assert sleeps.waits == [7.0]


class TestRetryableErrors:
    """Test error classification for retry logic"""

    def test_is_retryable_connection_error(self):
        assert is_retryable_error(ConnectionError("timeout")) is True

    def test_is_retryable_timeout_error(self):
        assert is_retryable_error(asyncio.TimeoutError()) is True

    def test_is_retryable_transport_error(self):
        assert is_retryable_error(httpx.ConnectError("refused")) is True

    def test_is_retryable_quota_exceeded(self):
        assert is_retryable_error(QuotaExceededError("429")) is True

    def test_is_retryable_http_5xx(self):
        assert is_retryable_error(_status_error(500)) is True

    def test_is_retryable_http_quota(self):
        """429 and GitHub's 403 secondary limits are retryable"""
        assert is_retryable_error(_status_error(429)) is True
        assert is_retryable_error(_status_error(403)) is True

    def test_not_retryable_http_4xx(self):
        for status in [400, 401, 404, 422]:
            assert is_retryable_error(_status_error(status)) is False, f"Status {status} should not be retryable"

    def test_not_retryable_value_error(self):
        assert is_retryable_error(ValueError("bad input")) is False


class TestRetryAfterHeader:
    """Test Retry-After header handling"""

    def test_reads_retry_after_from_error(self):
        assert get_retry_after_seconds(_status_error(429, {"Retry-After": "5"})) == 5.0

    def test_reads_retry_after_from_response(self):
        response = httpx.Response(429, headers={"Retry-After": "12"})
        assert get_retry_after_seconds(response) == 12.0

    def test_retry_after_missing(self):
        assert get_retry_after_seconds(_status_error(429)) is None

    def test_retry_after_http_date_ignored(self):
        error = _status_error(429, {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        assert get_retry_after_seconds(error) is None
