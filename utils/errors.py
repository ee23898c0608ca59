"""
Error taxonomy for the Artifact Radar pipeline.

Two families:
- Fetch outcomes (RetryableFetchError, FatalFetchError) are *returned* by
  QuotaAwareFetcher so callers decide between skip-and-continue and abort.
- Everything else is raised normally.

Only ConfigurationError is process-fatal; it is raised at startup before any
side effect happens.
"""

from __future__ import annotations

from typing import Optional


class RadarError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(RadarError):
    """Missing or invalid run configuration (fatal at startup)."""


class FetchError(RadarError):
    """Outcome of an outbound HTTP call that did not yield data."""

    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RetryableFetchError(FetchError):
    """Quota or server error that outlived the retry budget. Skip this item."""

    retryable = True


class FatalFetchError(FetchError):
    """Malformed query (422) or missing resource (404). Never retried."""

    retryable = False


class QuotaExceededError(RadarError):
    """The generative backend rejected a call for quota reasons (HTTP 429)."""


class JSONRepairError(RadarError, ValueError):
    """Every stage of the JSON repair cascade failed."""


class StoreError(RadarError):
    """A canonical-store request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
