"""
GitHub Discoverer for Artifact Radar

Finds agent artifacts (skills, MCP servers, cursor rules, n8n nodes,
workflows, LangChain/CrewAI tools) through the repository search API.

Strategy:
1. Walk SEARCH_QUERIES, one type hint per query
2. Broad queries are partitioned into STAR_BUCKETS, since GitHub serves
   at most 1000 results (34 pages of 30) per search
3. Each partition is paged until a short page or two consecutive empty
   responses
4. Identifiers are deduplicated across queries and partitions through the
   run's seen set
5. READMEs are not fetched here; enrichment fetches them lazily

Incremental mode reuses the same queries restricted to repos pushed in the
last few hours, sorted by update time, unpartitioned, five pages at most.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from collectors.base import BaseDiscoverer, DiscoveryQuery, DiscoveryRun
from collectors.retry_strategy import RetryConfig
from storage.staging_store import Candidate
from utils.rate_limiter import FetchResult, QuotaAwareFetcher, USER_AGENT, get_rate_limiter

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

GITHUB_API = "https://api.github.com"

PER_PAGE = 30
MAX_PAGES = 34  # 34 * 30 > 1000-result search ceiling
MAX_CONSECUTIVE_EMPTY = 2

INCREMENTAL_MAX_PAGES = 5
INCREMENTAL_LOOKBACK_HOURS = 4

STAR_BUCKETS = (
    "stars:>1000", "stars:501..1000", "stars:201..500", "stars:101..200",
    "stars:51..100", "stars:21..50", "stars:11..20", "stars:6..10",
    "stars:3..5", "stars:1..2", "stars:0",
)


def _q(hint: str, q: str, pages: int, partitioned: bool = False) -> DiscoveryQuery:
    return DiscoveryQuery(hint=hint, q=q, sort="stars", pages=pages, partitioned=partitioned)


SEARCH_QUERIES: List[DiscoveryQuery] = [
    # MCP servers
    _q("mcp-server", '"mcp-server" in:name language:TypeScript', 34, True),
    _q("mcp-server", '"mcp-server" in:name language:Python', 34, True),
    _q("mcp-server", '"mcp-server" in:name language:Go', 10),
    _q("mcp-server", '"mcp-server" in:name language:Rust', 10),
    _q("mcp-server", '"mcp-server" in:name language:Java', 10),
    _q("mcp-server", '"mcp-server" in:name language:C#', 10),
    _q("mcp-server", "topic:mcp-server", 34, True),
    _q("mcp-server", "topic:model-context-protocol", 20),
    _q("mcp-server", '"mcp" "server" in:name,description filename:mcp.json', 10),
    _q("mcp-server", '"@modelcontextprotocol/sdk" in:readme', 10),

    # Cursor rules
    _q("cursor-rules", "topic:cursor-rules", 34),
    _q("cursor-rules", "topic:cursorrules", 34),
    _q("cursor-rules", '"cursorrules" in:name,description', 20),
    _q("cursor-rules", '"cursor rules" in:name,description', 10),
    _q("cursor-rules", '"cursor-rules" in:name', 10),
    _q("cursor-rules", "topic:cursor-skills", 5),
    _q("cursor-rules", "filename:.cursorrules path:/", 20),

    # Skills
    _q("skill", "topic:agent-skills", 34, True),
    _q("skill", "topic:agent-skill", 20),
    _q("skill", "topic:claude-skills", 20),
    _q("skill", "topic:claude-code", 34, True),
    _q("skill", '"agent-skills" in:name', 34, True),
    _q("skill", "filename:SKILL.md", 34, True),
    _q("skill", '"npx skills add" in:readme', 20),
    _q("skill", '"claude-code-skill" in:name,description,topics', 10),
    _q("skill", '"skillkit" in:name,description', 10),
    _q("skill", '"claude-code" "plugin" in:name,description', 10),
    _q("skill", '"agent-skills-cli" OR "openskills" in:readme', 5),

    # n8n nodes
    _q("n8n-node", '"n8n-nodes-" in:name', 34, True),
    _q("n8n-node", "topic:n8n-community-node-package", 34, True),
    _q("n8n-node", "topic:n8n-community-node", 34),
    _q("n8n-node", "topic:n8n-community-nodes", 34),
    _q("n8n-node", "topic:n8n-node", 20),
    _q("n8n-node", '"n8n community node" in:description', 10),
    _q("n8n-node", '"n8n-community-node-package" in:readme', 20),
    _q("n8n-node", '"n8n-nodes" in:name language:TypeScript', 20),

    # Workflows
    _q("workflow", "topic:ai-workflow", 20),
    _q("workflow", "topic:agent-workflow", 20),
    _q("workflow", "topic:agentic-workflow", 20),
    _q("workflow", "topic:langgraph", 34),
    _q("workflow", "topic:agent-orchestration", 10),
    _q("workflow", '"agent workflow" in:name,description', 10),
    _q("workflow", '"ai workflow" in:name,description', 10),
    _q("workflow", "topic:autogen", 10),

    # LangChain tools
    _q("langchain-tool", "topic:langchain-tool", 20),
    _q("langchain-tool", "topic:langchain-tools", 20),
    _q("langchain-tool", '"langchain" "tool" in:name,description', 34, True),
    _q("langchain-tool", '"langchain-community" in:name', 10),
    _q("langchain-tool", "topic:langchain language:python", 20),
    _q("langchain-tool", '"langchain" "integration" in:name,description', 10),

    # CrewAI tools
    _q("crewai-tool", "topic:crewai", 34, True),
    _q("crewai-tool", "topic:crewai-tools", 20),
    _q("crewai-tool", '"crewai" "tool" in:name,description', 20),
    _q("crewai-tool", '"crewai_tools" in:readme', 10),
    _q("crewai-tool", '"crewai" in:name language:python', 20),
]


def incremental_queries(
    queries: Sequence[DiscoveryQuery] = SEARCH_QUERIES,
    now: Optional[datetime] = None,
) -> List[DiscoveryQuery]:
    """Recently-pushed variants of `queries`: sort=updated, unpartitioned, <=5 pages."""
    now = now or datetime.now(timezone.utc)
    since = (now - timedelta(hours=INCREMENTAL_LOOKBACK_HOURS)).strftime("%Y-%m-%d")
    return [
        DiscoveryQuery(
            hint=q.hint,
            q=f"{q.q} pushed:>={since}",
            sort="updated",
            pages=min(q.pages, INCREMENTAL_MAX_PAGES),
            partitioned=False,
        )
        for q in queries
    ]


def github_token() -> Optional[str]:
    return os.environ.get("GITHUB_PAT") or os.environ.get("GITHUB_TOKEN")


# =============================================================================
# REST CLIENT
# =============================================================================

class GitHubClient:
    """
    GitHub REST calls shared by discovery, hydration and README fetching.

    Search calls additionally wait on the 30/minute search limiter.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        fetcher: Optional[QuotaAwareFetcher] = None,
        retry_config: Optional[RetryConfig] = None,
        base_url: str = GITHUB_API,
    ):
        self.token = token
        self.base_url = base_url
        self.fetcher = fetcher or QuotaAwareFetcher(
            retry_config=retry_config or RetryConfig(max_retries=4),
            api_name="github",
            default_headers=self.headers,
        )
        self._search_limiter = get_rate_limiter("github_search")

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def __aenter__(self) -> "GitHubClient":
        await self.fetcher.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.fetcher.close()

    async def search(self, query: str, sort: str = "stars", page: int = 1) -> FetchResult:
        await self._search_limiter.acquire()
        return await self.fetcher.fetch(
            "GET",
            f"{self.base_url}/search/repositories",
            params={"q": query, "sort": sort, "order": "desc", "per_page": PER_PAGE, "page": page},
        )

    async def get_repo(self, full_name: str) -> Optional[Dict[str, Any]]:
        data = await self.fetcher.get_json(f"{self.base_url}/repos/{full_name}")
        return data if isinstance(data, dict) else None

    async def get_readme(self, full_name: str) -> Optional[str]:
        text = await self.fetcher.get_text(
            f"{self.base_url}/repos/{full_name}/readme",
            headers={"Accept": "application/vnd.github.v3.raw"},
        )
        return text or None


# =============================================================================
# DISCOVERER
# =============================================================================

PartitionSink = Callable[[str, int, int], Awaitable[None]]


class GitHubDiscoverer(BaseDiscoverer):
    """
    Repository search discoverer with star-range partitioning.

    Usage:
        async with GitHubDiscoverer(token=github_token()) as gh:
            async for candidate in gh.stream(run):
                ...
    """

    source_name = "github"
    api_name = "github"

    def __init__(
        self,
        token: Optional[str] = None,
        client: Optional[GitHubClient] = None,
        queries: Optional[Sequence[DiscoveryQuery]] = None,
        on_partition: Optional[PartitionSink] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.client = client or GitHubClient(token=token, retry_config=retry_config)
        super().__init__(fetcher=self.client.fetcher, retry_config=retry_config)
        self.queries = list(queries) if queries is not None else list(SEARCH_QUERIES)
        self.on_partition = on_partition
        self.pages_fetched = 0

        if not self.client.token:
            logger.warning("No GITHUB_PAT/GITHUB_TOKEN set - unauthenticated search is heavily rate limited")

    def default_queries(self) -> List[DiscoveryQuery]:
        return list(self.queries)

    async def discover(self, query: DiscoveryQuery, run: DiscoveryRun) -> AsyncIterator[Candidate]:
        partitions = STAR_BUCKETS if query.partitioned else (None,)

        for idx, bucket in enumerate(partitions):
            if run.should_stop():
                break

            partition_query = query.with_partition(bucket) if bucket else query
            before = len(run.seen)
            last_page = 0

            async for candidate, page in self._search_partition(partition_query, run):
                last_page = page
                yield candidate

            logger.info(
                f"  [{query.hint}] {partition_query.search}: "
                f"{len(run.seen) - before} new ({len(run.seen)} total unique)"
            )
            if self.on_partition is not None:
                await self.on_partition(query.key, last_page, idx)

    async def _search_partition(self, query: DiscoveryQuery, run: DiscoveryRun):
        """Page one partition; yields (candidate, page) pairs."""
        max_pages = min(query.pages, MAX_PAGES)
        consecutive_empty = 0

        for page in range(1, max_pages + 1):
            if run.should_stop():
                return

            result = await self.client.search(query.search, query.sort, page)
            self.pages_fetched += 1

            if result.error is not None and not result.error.retryable:
                self.record_error(f"{query.search!r} page {page}: {result.error}")
                return

            data = result.json()
            items = data.get("items") if isinstance(data, dict) else None
            if items is None:
                consecutive_empty += 1
                if consecutive_empty >= MAX_CONSECUTIVE_EMPTY:
                    logger.warning(f"  [page {page}] {MAX_CONSECUTIVE_EMPTY} consecutive empty responses, moving on")
                    return
                logger.warning(f"  [page {page}] empty response, trying next page")
                continue

            consecutive_empty = 0
            for repo in items:
                candidate = Candidate.from_github(repo, query.hint, source=self.source_name)
                if candidate is not None and run.claim(candidate.full_name):
                    yield candidate, page

            if len(items) < PER_PAGE:
                return
