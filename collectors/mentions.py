"""
Mention collection shared by the vibe-score sources.

A MentionSource searches one community site for each active artifact and
returns at most a handful of recent mentions per artifact. Sources are
independent: a failed request yields no mentions for that artifact and the
run continues.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set

from collectors.retry_strategy import RetryConfig
from utils.rate_limiter import QuotaAwareFetcher
from utils.time_budget import TimeBudget

logger = logging.getLogger(__name__)

MENTION_LOOKBACK_DAYS = 30
SNIPPET_MAX_CHARS = 500
PROGRESS_EVERY = 100

Artifact = Dict[str, Any]


@dataclass
class Mention:
    """One community post referencing an artifact."""
    source: str
    external_id: str
    title: str = ""
    url: str = ""
    author: str = ""
    score: int = 0
    comment_count: int = 0
    snippet: str = ""
    mentioned_at: Optional[str] = None

    def __post_init__(self):
        self.snippet = (self.snippet or "")[:SNIPPET_MAX_CHARS]

    def mentions_name(self, name: str) -> bool:
        needle = (name or "").lower()
        return bool(needle) and (needle in self.title.lower() or needle in self.snippet.lower())

    def to_row(self, artifact_id: int) -> Dict[str, Any]:
        row = asdict(self)
        row["artifact_id"] = artifact_id
        return row


def epoch_to_iso(seconds: Any) -> Optional[str]:
    try:
        return datetime.fromtimestamp(float(seconds), tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError):
        return None


def lookback_epoch(days: int = MENTION_LOOKBACK_DAYS, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return int((now - timedelta(days=days)).timestamp())


class MentionSource(ABC):
    """
    Base class for mention searches.

    Usage:
        async with HackerNewsSource() as hn:
            by_artifact = await hn.collect(artifacts, budget)
    """

    source_name: str = "unknown"
    api_name: Optional[str] = None

    def __init__(
        self,
        fetcher: Optional[QuotaAwareFetcher] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.fetcher = fetcher or QuotaAwareFetcher(
            retry_config=retry_config or RetryConfig(max_retries=2),
            api_name=self.api_name,
            default_headers=self.default_headers(),
        )
        self.searches = 0
        self.failures = 0
        self.visited: Set[int] = set()

    def default_headers(self) -> Dict[str, str]:
        return {}

    async def __aenter__(self):
        await self.fetcher.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.fetcher.close()

    @property
    def enabled(self) -> bool:
        return True

    def applies_to(self, artifact: Artifact) -> bool:
        return bool(artifact.get("name"))

    def covers(self, artifact: Artifact) -> bool:
        """True once the last collect() searched this artifact, or had no need to."""
        return not self.enabled or not self.applies_to(artifact) or artifact["id"] in self.visited

    @abstractmethod
    async def mentions_for(self, artifact: Artifact) -> List[Mention]:
        """Recent mentions of one artifact (empty on failure)."""

    async def collect(
        self,
        artifacts: Sequence[Artifact],
        budget: Optional[TimeBudget] = None,
    ) -> Dict[int, List[Mention]]:
        """Mentions keyed by artifact id, for artifacts that have any."""
        results: Dict[int, List[Mention]] = {}
        self.visited = set()
        if not self.enabled:
            logger.warning(f"[{self.source_name}] skipping (not configured)")
            return results

        targets = [a for a in artifacts if self.applies_to(a)]
        logger.info(f"[{self.source_name}] searching {len(targets)} artifacts")

        for i, artifact in enumerate(targets):
            if budget is not None and budget.expired():
                logger.info(f"[{self.source_name}] time budget expired at {i}/{len(targets)}")
                break

            mentions = await self.mentions_for(artifact)
            self.visited.add(artifact["id"])
            if mentions:
                results[artifact["id"]] = mentions

            if i and i % PROGRESS_EVERY == 0:
                logger.info(f"  [{self.source_name}] {i}/{len(targets)} ({len(results)} with mentions)")

        logger.info(f"[{self.source_name}] {len(results)} artifacts with mentions")
        return results

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        self.searches += 1
        result = await self.fetcher.fetch("GET", url, **kwargs)
        if not result.ok:
            self.failures += 1
            logger.debug(f"[{self.source_name}] {url}: {result.error}")
            return None
        return result.json()
