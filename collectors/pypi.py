"""
PyPI Discoverer

PyPI has no JSON search API, so the warehouse HTML listing is scraped for
/project/<name>/ links (up to 10 pages per query), then each hit is
resolved through the JSON package endpoint with bounded concurrency.

The package long description doubles as the README, so PyPI-only
candidates never need a GitHub README fetch.
"""

import asyncio
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional

from collectors.base import BaseDiscoverer, DiscoveryQuery, DiscoveryRun
from storage.staging_store import Candidate
from utils.canonical_keys import github_full_name_from_url, github_url_for, registry_identifier

logger = logging.getLogger(__name__)

PYPI_SEARCH_URL = "https://pypi.org/search/"
PYPI_JSON_URL = "https://pypi.org/pypi/{name}/json"
MAX_PAGES = 10
DETAIL_CONCURRENCY = 10

_PACKAGE_LINK_RE = re.compile(r'<a class="package-snippet"[^>]*href="/project/([^/"]+)/?"')
_KEYWORD_SPLIT_RE = re.compile(r"[,\s]+")

# project_urls keys checked for a source repository, in order
_REPO_URL_KEYS = ("Repository", "Source", "Source Code", "Homepage")


def _q(keywords: str, hint: str) -> DiscoveryQuery:
    return DiscoveryQuery(hint=hint, q=keywords, sort="relevance", pages=MAX_PAGES)


PYPI_QUERIES: List[DiscoveryQuery] = [
    _q("mcp server", "mcp-server"),
    _q("mcp-server", "mcp-server"),
    _q("model context protocol", "mcp-server"),
    _q("mcp tool", "mcp-server"),
    _q("langchain tool", "langchain-tool"),
    _q("langchain integration", "langchain-tool"),
    _q("crewai tool", "crewai-tool"),
    _q("crewai", "crewai-tool"),
    _q("ai agent tool", "workflow"),
    _q("ai workflow", "workflow"),
    _q("autogen", "workflow"),
    _q("claude code", "skill"),
    _q("agent skills", "skill"),
]


def extract_package_names(html: str) -> List[str]:
    """Package names from one search results page, in order, deduplicated."""
    names: List[str] = []
    for name in _PACKAGE_LINK_RE.findall(html or ""):
        if name not in names:
            names.append(name)
    return names


def candidate_from_pypi(data: Dict[str, Any], hint: str) -> Optional[Candidate]:
    """Map a pypi.org JSON document to a Candidate."""
    info = (data or {}).get("info") or {}
    name = info.get("name")
    if not name:
        return None

    project_urls = info.get("project_urls") or {}
    gh_name = None
    for url in [project_urls.get(k) for k in _REPO_URL_KEYS] + [info.get("home_page")]:
        gh_name = github_full_name_from_url(url or "")
        if gh_name:
            break

    keywords = info.get("keywords") or ""
    topics = [k for k in _KEYWORD_SPLIT_RE.split(keywords) if k] if isinstance(keywords, str) else []

    return Candidate(
        full_name=gh_name or registry_identifier("pypi", name),
        type_hint=hint,
        source="pypi",
        owner_login=info.get("author") or (gh_name.split("/")[0] if gh_name else None),
        repo_name=name,
        description=info.get("summary") or "",
        language="Python",
        license=str(info["license"])[:100] if info.get("license") else None,
        topics=topics,
        github_url=github_url_for(gh_name) if gh_name else f"https://pypi.org/project/{name}/",
        readme_raw=info.get("description") or None,
    )


class PyPIDiscoverer(BaseDiscoverer):
    """HTML search plus JSON detail lookups on pypi.org."""

    source_name = "pypi"
    api_name = "pypi"
    preseed_known = True

    def __init__(self, queries: Optional[List[DiscoveryQuery]] = None, concurrency: int = DETAIL_CONCURRENCY, **kwargs):
        super().__init__(**kwargs)
        self.queries = list(queries) if queries is not None else list(PYPI_QUERIES)
        self.concurrency = concurrency

    def default_queries(self) -> List[DiscoveryQuery]:
        return list(self.queries)

    async def search(self, query: DiscoveryQuery, run: DiscoveryRun) -> List[str]:
        names: List[str] = []
        for page in range(1, min(query.pages, MAX_PAGES) + 1):
            if run.should_stop():
                break

            html = await self.fetcher.get_text(PYPI_SEARCH_URL, params={"q": query.q, "page": page})
            if html is None:
                self.record_error(f"search {query.q!r} page {page} failed")
                break

            found = extract_package_names(html)
            if not found:
                break
            names.extend(n for n in found if n not in names)

        return names

    async def package_info(self, name: str, semaphore: asyncio.Semaphore) -> Optional[Dict[str, Any]]:
        async with semaphore:
            data = await self.fetcher.get_json(PYPI_JSON_URL.format(name=name))
        if not isinstance(data, dict):
            logger.debug(f"  [pypi] no JSON details for {name}")
            return None
        return data

    async def discover(self, query: DiscoveryQuery, run: DiscoveryRun) -> AsyncIterator[Candidate]:
        names = await self.search(query, run)
        logger.info(f"  [pypi] {query.q!r}: {len(names)} packages listed")

        semaphore = asyncio.Semaphore(self.concurrency)
        for start in range(0, len(names), self.concurrency):
            if run.should_stop():
                return

            chunk = names[start:start + self.concurrency]
            infos = await asyncio.gather(*(self.package_info(n, semaphore) for n in chunk))

            for info in infos:
                candidate = candidate_from_pypi(info, query.hint) if info else None
                if candidate is not None and self.accept(run, candidate.full_name):
                    yield candidate
