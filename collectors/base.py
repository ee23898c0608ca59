"""
Base Discoverer Class for Artifact Radar

Provides common functionality for all source discoverers:
- Owned QuotaAwareFetcher (async context manager pattern)
- Run-scoped deduplication via DiscoveryRun.claim()
- Time-budget and cap checks between units of work
- Per-source statistics

All discoverers should inherit from BaseDiscoverer and implement:
- discover(query, run): yield new Candidates for one DiscoveryQuery
- default_queries(): the queries a full run walks
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set

from collectors.retry_strategy import RetryConfig
from storage.staging_store import Candidate
from utils.rate_limiter import QuotaAwareFetcher
from utils.time_budget import TimeBudget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryQuery:
    """
    One search a discoverer runs.

    `q` is source-specific: a GitHub search string, an npm keyword, an
    awesome-list "owner/repo", a BigQuery query name.
    """
    hint: str
    q: str
    sort: str = "stars"
    pages: int = 10
    partitioned: bool = False
    partition: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.hint}:{self.q}"

    @property
    def search(self) -> str:
        return f"{self.q} {self.partition}" if self.partition else self.q

    def with_partition(self, partition: str) -> "DiscoveryQuery":
        return replace(self, partition=partition)


@dataclass
class DiscoveryRun:
    """
    State shared by every discoverer in one run, discarded at the end.

    `cap` of 0 means uncapped.
    """
    budget: TimeBudget = field(default_factory=TimeBudget.unlimited)
    cap: int = 0
    seen: Set[str] = field(default_factory=set)
    duplicates: int = 0

    @property
    def cap_reached(self) -> bool:
        return bool(self.cap) and len(self.seen) >= self.cap

    def should_stop(self) -> bool:
        return self.cap_reached or self.budget.expired()

    def claim(self, identifier: str) -> bool:
        """True the first time an identifier is offered (and the cap allows it)."""
        if not identifier:
            return False
        if identifier in self.seen:
            self.duplicates += 1
            return False
        if self.cap_reached:
            return False
        self.seen.add(identifier)
        return True


class BaseDiscoverer(ABC):
    """
    Base class for all source discoverers.

    Usage:
        class MyDiscoverer(BaseDiscoverer):
            source_name = "npm"

            async def discover(self, query, run):
                ...
                if run.claim(candidate.full_name):
                    yield candidate

        async with MyDiscoverer() as discoverer:
            async for candidate in discoverer.stream(run):
                buffer.append(candidate)
    """

    source_name: str = "unknown"
    api_name: Optional[str] = None

    def __init__(
        self,
        fetcher: Optional[QuotaAwareFetcher] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.retry_config = retry_config or RetryConfig(max_retries=4)
        self.fetcher = fetcher or QuotaAwareFetcher(
            retry_config=self.retry_config,
            api_name=self.api_name,
            default_headers=self.default_headers(),
        )

        # Statistics
        self.candidates_found = 0
        self.requests_failed = 0
        self.queries_run = 0
        self.known_skipped = 0
        self._errors: List[str] = []

        # Identifiers already staged; registry and dataset sources skip these
        self.known: Set[str] = set()

    # Set by sources that pre-seed from the staging store
    preseed_known: bool = False

    def default_headers(self) -> Dict[str, str]:
        return {}

    def seed_known(self, identifiers: Set[str]) -> None:
        self.known = set(identifiers)
        logger.info(f"[{self.source_name}] {len(self.known)} identifiers already staged")

    def accept(self, run: DiscoveryRun, identifier: str) -> bool:
        """run.claim() for identifiers not already staged."""
        if identifier in self.known:
            self.known_skipped += 1
            return False
        return run.claim(identifier)

    async def __aenter__(self):
        await self.fetcher.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.fetcher.close()

    @abstractmethod
    def discover(self, query: DiscoveryQuery, run: DiscoveryRun) -> AsyncIterator[Candidate]:
        """Yield candidates for one query that `run.claim()` accepted."""

    @abstractmethod
    def default_queries(self) -> List[DiscoveryQuery]:
        """Queries a full run of this source walks."""

    async def stream(
        self,
        run: DiscoveryRun,
        queries: Optional[Sequence[DiscoveryQuery]] = None,
    ) -> AsyncIterator[Candidate]:
        """Walk queries in order, stopping cleanly on budget expiry or cap."""
        queries = list(queries) if queries is not None else self.default_queries()
        logger.info(f"[{self.source_name}] {len(queries)} queries")

        for i, query in enumerate(queries, 1):
            if run.should_stop():
                logger.info(f"[{self.source_name}] stopping before query {i}/{len(queries)} ({run.budget})")
                break

            self.queries_run += 1
            logger.info(f"[{self.source_name}] query {i}/{len(queries)} [{query.hint}] {query.q}")

            async for candidate in self.discover(query, run):
                self.candidates_found += 1
                yield candidate

    def record_error(self, message: str) -> None:
        self.requests_failed += 1
        self._errors.append(message)
        logger.warning(f"[{self.source_name}] {message}")

    @property
    def errors(self) -> List[str]:
        return list(self._errors)

    def stats(self) -> Dict[str, int]:
        return {
            "queries_run": self.queries_run,
            "candidates_found": self.candidates_found,
            "requests_failed": self.requests_failed,
            "known_skipped": self.known_skipped,
            "http_requests": self.fetcher.request_count,
            "http_retries": self.fetcher.retry_count,
        }
