"""
Rate limiting and quota-aware HTTP fetching for Artifact Radar.

Provides:
- AsyncRateLimiter: token bucket pacing for APIs with a documented rate
- RateLimiterPool / get_rate_limiter: shared per-API limiters
- QuotaAwareFetcher: outbound HTTP with proactive quota pacing and bounded
  retry, returning a FetchResult instead of raising

Usage:
    async with QuotaAwareFetcher(api_name="github", default_headers=headers) as fetcher:
        result = await fetcher.fetch("GET", url, params={"q": query})
        if result.ok:
            data = result.json()
        elif result.error.retryable:
            ...  # skip this item, keep going

API limits:
    - GitHub REST: 5000/hour, search: 30/minute
    - Hacker News (Algolia): ~170/minute (self-imposed)
    - Reddit OAuth: 100/minute
    - npm, PyPI, Dev.to: conservative self-imposed limits
    - raw.githubusercontent.com: unlimited
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from collectors.retry_strategy import (
    FailureKind,
    RetryConfig,
    classify_status,
    get_retry_after_seconds,
)
from utils.errors import FatalFetchError, FetchError, RetryableFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "ArtifactRadar/1.0"


class AsyncRateLimiter:
    """
    Async rate limiter using token bucket algorithm.

    Tokens are refilled over time based on the configured rate.
    Callers wait if no tokens are available.

    Args:
        rate: Maximum requests per period (None = unlimited)
        period: Time period in seconds
    """

    def __init__(self, rate: Optional[int] = None, period: int = 1):
        self.rate = rate
        self.period = period
        self._lock = asyncio.Lock()
        self._tokens: float = float(rate) if rate else float("inf")
        self._last_refill: Optional[float] = None

    async def acquire(self) -> None:
        """
        Acquire permission to make a request.

        Blocks until a token is available. Unlimited limiters return
        immediately.
        """
        if self.rate is None:
            return

        async with self._lock:
            now = time.monotonic()

            if self._last_refill is None:
                self._last_refill = now
                self._tokens = float(self.rate)

            elapsed = now - self._last_refill
            refill_amount = elapsed * (self.rate / self.period)
            self._tokens = min(self.rate, self._tokens + refill_amount)
            self._last_refill = now

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * (self.period / self.rate)
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 1

            self._tokens -= 1


class RateLimiterPool:
    """
    Factory for per-API rate limiters.

    Creates limiters on demand with the configured limits for each API.
    """

    API_LIMITS: Dict[str, Dict[str, Optional[int]]] = {
        "github": {"rate": 5000, "period": 3600},        # 5000/hour
        "github_search": {"rate": 30, "period": 60},     # search API: 30/min
        "raw_github": {"rate": None, "period": 1},       # Unlimited
        "npm": {"rate": 200, "period": 60},              # conservative
        "pypi": {"rate": 60, "period": 60},              # HTML search, be gentle
        "pypistats": {"rate": 300, "period": 60},
        "hacker_news": {"rate": 170, "period": 60},
        "reddit": {"rate": 90, "period": 60},            # OAuth: 100/min
        "devto": {"rate": 120, "period": 60},
        "supabase": {"rate": None, "period": 1},
    }

    def __init__(self):
        self._limiters: Dict[str, AsyncRateLimiter] = {}

    def get(self, api_name: str) -> AsyncRateLimiter:
        """Get or create rate limiter for an API."""
        if api_name not in self._limiters:
            limits = self.API_LIMITS.get(api_name, {"rate": None, "period": 1})
            self._limiters[api_name] = AsyncRateLimiter(
                rate=limits["rate"],
                period=limits["period"],
            )
            if limits["rate"]:
                logger.info(
                    f"Created rate limiter for {api_name}: "
                    f"{limits['rate']} requests per {limits['period']}s"
                )
            else:
                logger.debug(f"Created unlimited rate limiter for {api_name}")

        return self._limiters[api_name]

    def reset(self) -> None:
        """Reset all limiters (for testing)."""
        self._limiters.clear()


_global_pool = RateLimiterPool()


def get_rate_limiter(api_name: str) -> AsyncRateLimiter:
    """Get rate limiter from global pool."""
    return _global_pool.get(api_name)


def reset_limiters() -> None:
    """Reset all global rate limiters. Primarily for testing."""
    _global_pool.reset()


# =============================================================================
# QUOTA-AWARE FETCHER
# =============================================================================

@dataclass
class FetchResult:
    """Outcome of QuotaAwareFetcher.fetch: a response or a FetchError."""

    response: Optional[httpx.Response] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.response is not None and self.error is None

    @property
    def status_code(self) -> Optional[int]:
        if self.response is not None:
            return self.response.status_code
        return self.error.status_code if self.error else None

    def json(self) -> Any:
        """Parsed JSON body, or None for errors and empty/undecodable bodies."""
        if not self.ok or not self.response.content:
            return None
        try:
            return self.response.json()
        except ValueError:
            logger.debug(f"Undecodable JSON body from {self.response.url}")
            return None

    @property
    def text(self) -> Optional[str]:
        if not self.ok:
            return None
        return self.response.text


class QuotaAwareFetcher:
    """
    Outbound HTTP with quota-aware pacing and bounded retry.

    Before every call, the remaining-quota header seen on the previous
    response is checked; below `low_quota_threshold` the fetcher sleeps until
    the advertised reset plus a safety margin. Errors follow the taxonomy in
    collectors.retry_strategy:

    - 403/429: capped backoff (Retry-After or reset header), then
      RetryableFetchError after `retry_config.max_retries`
    - 404/422/other 4xx: FatalFetchError, never retried
    - 5xx and transport errors: linear backoff, then RetryableFetchError
    """

    REMAINING_HEADER = "X-RateLimit-Remaining"
    RESET_HEADER = "X-RateLimit-Reset"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        api_name: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
        low_quota_threshold: int = 3,
        max_quota_pause: float = 3600.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.retry_config = retry_config or RetryConfig(max_retries=4)
        self.api_name = api_name or "default"
        self.default_headers = {"User-Agent": USER_AGENT, **(default_headers or {})}
        self.low_quota_threshold = low_quota_threshold
        self.max_quota_pause = max_quota_pause
        self.timeout = timeout

        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._clock = clock
        self._rate_limiter = get_rate_limiter(api_name) if api_name else AsyncRateLimiter()

        # Quota state from the most recent response
        self._quota_remaining: Optional[int] = None
        self._quota_reset: Optional[float] = None

        self.request_count = 0
        self.retry_count = 0

    async def __aenter__(self) -> "QuotaAwareFetcher":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    # -------------------------------------------------------------------------

    def _observe_quota(self, response: httpx.Response) -> None:
        remaining = response.headers.get(self.REMAINING_HEADER)
        reset = response.headers.get(self.RESET_HEADER)
        try:
            self._quota_remaining = int(remaining) if remaining is not None else None
        except ValueError:
            self._quota_remaining = None
        try:
            self._quota_reset = float(reset) if reset is not None else None
        except ValueError:
            self._quota_reset = None

    def _reset_epoch(self, response: httpx.Response) -> Optional[float]:
        reset = response.headers.get(self.RESET_HEADER)
        try:
            return float(reset) if reset is not None else None
        except ValueError:
            return None

    async def _pace_for_quota(self) -> None:
        """Proactive pause when the previous response reported a low quota."""
        if self._quota_remaining is None or self._quota_remaining >= self.low_quota_threshold:
            return

        now = self._clock()
        until_reset = max(0.0, (self._quota_reset or now) - now)
        wait = min(until_reset + self.retry_config.reset_margin, self.max_quota_pause)
        logger.warning(
            f"[{self.api_name}] quota low ({self._quota_remaining} left), "
            f"sleeping {wait:.0f}s until reset"
        )
        # Cleared so concurrent callers don't stack the same pause
        self._quota_remaining = None
        await self._sleep(wait)

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Any = None,
    ) -> FetchResult:
        """
        Perform one logical request with pacing and bounded retry.

        Never raises for HTTP or transport outcomes; inspect FetchResult.
        """
        merged_headers = {**self.default_headers, **(headers or {})}
        max_retries = self.retry_config.max_retries

        for attempt in range(max_retries + 1):
            await self._pace_for_quota()
            await self._rate_limiter.acquire()

            try:
                response = await self.client.request(
                    method, url, headers=merged_headers, params=params, json=json, data=data
                )
            except httpx.TransportError as e:
                if attempt < max_retries:
                    wait = self.retry_config.get_linear_wait(attempt)
                    logger.warning(
                        f"[{self.api_name}] transport error ({e.__class__.__name__}) "
                        f"- retry {attempt + 1}/{max_retries} in {wait:.0f}s"
                    )
                    self.retry_count += 1
                    await self._sleep(wait)
                    continue
                return FetchResult(error=RetryableFetchError(
                    f"Transport error after {max_retries} retries: {e}", url=url
                ))

            self.request_count += 1
            self._observe_quota(response)
            status = response.status_code

            if status < 400:
                return FetchResult(response=response)

            kind = classify_status(status)

            if kind == FailureKind.FATAL:
                logger.debug(f"[{self.api_name}] {status} for {url} - not retrying")
                return FetchResult(error=FatalFetchError(
                    f"HTTP {status}", status_code=status, url=url
                ))

            if attempt >= max_retries:
                logger.warning(
                    f"[{self.api_name}] HTTP {status} - exhausted {max_retries} retries, skipping"
                )
                return FetchResult(error=RetryableFetchError(
                    f"HTTP {status} after {max_retries} retries", status_code=status, url=url
                ))

            if kind == FailureKind.QUOTA:
                retry_after = get_retry_after_seconds(response)
                if retry_after is not None:
                    wait = min(retry_after, self.retry_config.quota_wait_max)
                else:
                    wait = self.retry_config.get_quota_wait(
                        self._reset_epoch(response), now=self._clock()
                    )
                # This wait already covers the reset
                self._quota_remaining = None
                logger.warning(
                    f"[{self.api_name}] rate limited ({status}) - retry "
                    f"{attempt + 1}/{max_retries} in {wait:.0f}s"
                )
            else:
                wait = self.retry_config.get_linear_wait(attempt)
                logger.warning(
                    f"[{self.api_name}] HTTP {status} - retry {attempt + 1}/{max_retries} in {wait:.0f}s"
                )

            self.retry_count += 1
            await self._sleep(wait)

        return FetchResult(error=RetryableFetchError("Retry loop exited", url=url))

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """GET and decode JSON; None means "no data" (error or empty body)."""
        result = await self.fetch("GET", url, **kwargs)
        return result.json()

    async def get_text(self, url: str, **kwargs: Any) -> Optional[str]:
        """GET a text body; None on any error."""
        result = await self.fetch("GET", url, **kwargs)
        return result.text
