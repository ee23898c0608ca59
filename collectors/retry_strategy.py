"""
Centralized Retry Strategy for Artifact Radar.

Provides:
- RetryConfig: one policy object (attempt budget + backoff schedules)
- FailureKind / classify_status: HTTP status -> error taxonomy
- with_retry: async wrapper with exponential backoff
- is_retryable_error: exception classification
- get_retry_after_seconds: Retry-After header parsing

Every outbound call gets its schedule from a RetryConfig:
- QuotaAwareFetcher uses get_quota_wait / get_linear_wait
- the Gemini client and the canonical store use with_retry

Usage:
    from collectors.retry_strategy import with_retry, RetryConfig

    config = RetryConfig(max_retries=3, backoff_base=2.0)
    result = await with_retry(call_model, config, retry_on=(QuotaExceededError,))
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import httpx

from utils.errors import QuotaExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(str, Enum):
    """How a non-2xx HTTP status is handled."""
    QUOTA = "quota"      # 403/429: capped backoff, bounded retries
    FATAL = "fatal"      # 404/422/other 4xx: never retried
    SERVER = "server"    # 5xx: linear backoff


def classify_status(status_code: int) -> FailureKind:
    """Map an HTTP error status to a FailureKind."""
    if status_code in (403, 429):
        return FailureKind.QUOTA
    if 500 <= status_code < 600:
        return FailureKind.SERVER
    return FailureKind.FATAL


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    backoff_base: float = 2.0  # Exponential base (2^attempt)
    backoff_multiplier: float = 1.0
    backoff_max: float = 30.0  # Maximum exponential wait in seconds
    jitter: bool = True  # Add randomness to prevent thundering herd

    # Linear schedule for transient server errors
    linear_step: float = 3.0

    # Quota schedule (seconds)
    quota_wait_min: float = 5.0
    quota_wait_max: float = 120.0
    reset_margin: float = 2.0

    def get_wait_seconds(self, attempt: int) -> float:
        """
        Calculate wait time for a given attempt (0-indexed).

        Uses exponential backoff: multiplier * base^attempt, capped at backoff_max.
        Optionally adds jitter (±25%) to prevent synchronized retries.
        """
        wait = min(self.backoff_multiplier * self.backoff_base ** attempt, self.backoff_max)

        if self.jitter:
            jitter_factor = 0.75 + (random.random() * 0.5)
            wait *= jitter_factor

        return wait

    def get_linear_wait(self, attempt: int) -> float:
        """Wait before retrying a 5xx: step * (attempt + 1)."""
        return self.linear_step * (attempt + 1)

    def get_quota_wait(self, reset_epoch: Optional[float], now: Optional[float] = None) -> float:
        """
        Wait before retrying a quota error.

        Waits until the quota reset (at least quota_wait_min) plus a margin,
        never longer than quota_wait_max.
        """
        now = time.time() if now is None else now
        until_reset = (reset_epoch - now) if reset_epoch else 0.0
        wait = max(self.quota_wait_min, until_reset) + self.reset_margin
        return min(wait, self.quota_wait_max)


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error is retryable.

    Retryable errors:
    - ConnectionError, TimeoutError, httpx transport errors
    - HTTP 5xx, 429 and 403 (quota)
    - QuotaExceededError from the generative backend

    Everything else (4xx, programming errors) is not.
    """
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    if isinstance(error, httpx.TransportError):
        return True

    if isinstance(error, QuotaExceededError):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        return classify_status(error.response.status_code) != FailureKind.FATAL

    return False


def get_retry_after_seconds(error: Any) -> Optional[float]:
    """
    Extract Retry-After header value from an HTTP error or response.

    Returns:
        Wait time in seconds, or None if header not present
    """
    if isinstance(error, httpx.HTTPStatusError):
        headers = error.response.headers
    elif isinstance(error, httpx.Response):
        headers = error.headers
    else:
        return None

    retry_after = headers.get("Retry-After")
    if retry_after is None:
        return None

    try:
        return float(retry_after)
    except ValueError:
        # HTTP-date form is not used by the APIs we call
        return None


async def with_retry(
    func: Callable[[], T],
    config: RetryConfig,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> T:
    """
    Execute an async function with retry logic.

    Uses exponential backoff with optional jitter. Respects Retry-After
    headers on 429 responses.

    Args:
        func: Async function to execute (no arguments)
        config: Retry configuration
        retry_on: Exception types to retry on (default: is_retryable_error)
        sleep: Awaitable sleep function (injectable for tests)

    Raises:
        The last exception if all retries exhausted
    """
    last_error: Optional[Exception] = None

    for attempt in range(config.max_retries + 1):  # +1 for initial attempt
        try:
            return await func()

        except Exception as e:
            if retry_on is not None:
                should_retry = isinstance(e, retry_on)
            else:
                should_retry = is_retryable_error(e)

            if not should_retry:
                raise

            last_error = e

            if attempt >= config.max_retries:
                logger.error(
                    f"All {config.max_retries} retries exhausted. "
                    f"Last error: {e}"
                )
                raise

            wait_time = config.get_wait_seconds(attempt)

            retry_after = get_retry_after_seconds(e)
            if retry_after is not None:
                wait_time = min(retry_after, config.quota_wait_max)

            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed: {e}. "
                f"Retrying in {wait_time:.2f}s..."
            )

            await sleep(wait_time)

    if last_error:
        raise last_error
    raise RuntimeError("Unexpected state in with_retry")
