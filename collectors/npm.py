"""
npm Registry Discoverer

Searches the npm registry for MCP servers, n8n nodes and agent tooling.
No GitHub API cost: packages whose repository or homepage URL points at
GitHub are staged under the repo identifier, everything else as
"npm:<package>".

Pagination: size 250, offset paging, at most 2000 results per keyword.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from collectors.base import BaseDiscoverer, DiscoveryQuery, DiscoveryRun
from storage.staging_store import Candidate
from utils.canonical_keys import github_full_name_from_url, github_url_for, registry_identifier

logger = logging.getLogger(__name__)

NPM_SEARCH_URL = "https://registry.npmjs.org/-/v1/search"
PAGE_SIZE = 250
MAX_RESULTS = 2000


def _q(keywords: str, hint: str) -> DiscoveryQuery:
    return DiscoveryQuery(hint=hint, q=keywords, sort="relevance", pages=MAX_RESULTS // PAGE_SIZE)


NPM_QUERIES: List[DiscoveryQuery] = [
    _q("mcp server", "mcp-server"),
    _q("mcp-server", "mcp-server"),
    _q("model context protocol", "mcp-server"),
    _q("@modelcontextprotocol", "mcp-server"),
    _q("mcp tool", "mcp-server"),
    _q("mcp plugin", "mcp-server"),
    _q("mcp integration", "mcp-server"),
    _q("n8n-nodes", "n8n-node"),
    _q("n8n community node", "n8n-node"),
    _q("n8n-community-node-package", "n8n-node"),
    _q("langchain tool", "langchain-tool"),
    _q("@langchain", "langchain-tool"),
    _q("langchain integration", "langchain-tool"),
    _q("claude-code skill", "skill"),
    _q("agent-skills", "skill"),
    _q("ai agent tool", "skill"),
    _q("crewai", "crewai-tool"),
    _q("ai workflow agent", "workflow"),
    _q("agentic workflow", "workflow"),
]


def candidate_from_npm(obj: Dict[str, Any], hint: str) -> Optional[Candidate]:
    """Map one registry search object to a Candidate."""
    pkg = obj.get("package") or {}
    name = pkg.get("name")
    if not name:
        return None

    links = pkg.get("links") or {}
    gh_name = github_full_name_from_url(links.get("repository") or "") or \
        github_full_name_from_url(links.get("homepage") or "")
    full_name = gh_name or registry_identifier("npm", name)

    publisher = pkg.get("publisher") or {}
    author = pkg.get("author") or {}

    return Candidate(
        full_name=full_name,
        type_hint=hint,
        source="npm",
        owner_login=publisher.get("username") or author.get("name") or (gh_name.split("/")[0] if gh_name else None),
        repo_name=name,
        description=pkg.get("description") or "",
        language="JavaScript",
        topics=[str(k) for k in (pkg.get("keywords") or [])],
        github_url=github_url_for(gh_name) if gh_name else f"https://www.npmjs.com/package/{name}",
        github_created_at=pkg.get("date"),
        github_updated_at=pkg.get("date"),
    )


class NpmDiscoverer(BaseDiscoverer):
    """Keyword search over registry.npmjs.org."""

    source_name = "npm"
    api_name = "npm"
    preseed_known = True

    def __init__(self, queries: Optional[List[DiscoveryQuery]] = None, **kwargs):
        super().__init__(**kwargs)
        self.queries = list(queries) if queries is not None else list(NPM_QUERIES)

    def default_queries(self) -> List[DiscoveryQuery]:
        return list(self.queries)

    async def discover(self, query: DiscoveryQuery, run: DiscoveryRun) -> AsyncIterator[Candidate]:
        found = 0
        for offset in range(0, MAX_RESULTS, PAGE_SIZE):
            if run.should_stop():
                return

            result = await self.fetcher.fetch(
                "GET", NPM_SEARCH_URL, params={"text": query.q, "size": PAGE_SIZE, "from": offset}
            )
            if not result.ok:
                self.record_error(f"search {query.q!r} at offset {offset}: {result.error}")
                return

            data = result.json() or {}
            objects = data.get("objects") or []
            if not objects:
                break

            for obj in objects:
                candidate = candidate_from_npm(obj, query.hint)
                if candidate is not None and self.accept(run, candidate.full_name):
                    found += 1
                    yield candidate

            if len(objects) < PAGE_SIZE:
                break

        logger.info(f"  [npm] {query.q!r}: {found} new")
