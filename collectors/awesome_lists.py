"""
Awesome-List Discoverer

Parses curated awesome-lists from raw.githubusercontent.com (README.md on
main, then master) and stages every linked GitHub repository. Links to
issues, pulls, wikis, trees and blobs are dropped; only repo roots count.

The list entry's link text becomes the provisional description.
"""

import logging
import re
from typing import AsyncIterator, List, Optional, Tuple

from collectors.base import BaseDiscoverer, DiscoveryQuery, DiscoveryRun
from storage.staging_store import Candidate
from utils.canonical_keys import github_full_name_from_url, github_url_for

logger = logging.getLogger(__name__)

RAW_URL = "https://raw.githubusercontent.com/{list_name}/{branch}/{path}"
BRANCHES = ("main", "master")

_LINK_RE = re.compile(
    r"\[([^\]]*)\]\(https?://github\.com/([A-Za-z0-9._-]+/[A-Za-z0-9._-]+)([/#?][^)\s]*)?\)"
)
EXCLUDED_PATHS = {"issues", "pull", "pulls", "wiki", "tree", "blob"}


def _list(list_name: str, hint: str) -> DiscoveryQuery:
    return DiscoveryQuery(hint=hint, q=list_name, sort="", pages=1)


AWESOME_LISTS: List[DiscoveryQuery] = [
    _list("punkpeye/awesome-mcp-servers", "mcp-server"),
    _list("wong2/awesome-mcp-servers", "mcp-server"),
    _list("appcypher/awesome-mcp-servers", "mcp-server"),
    _list("modelcontextprotocol/servers", "mcp-server"),
    _list("anthropics/awesome-mcp", "mcp-server"),
    _list("PatrickJS/awesome-cursorrules", "cursor-rules"),
    _list("pontusab/cursor.directory", "cursor-rules"),
    _list("jmgb-digital/awesome-n8n", "n8n-node"),
    _list("kyrolabs/awesome-langchain", "langchain-tool"),
    _list("crewAIInc/awesome-crewai", "crewai-tool"),
    _list("e2b-dev/awesome-ai-agents", "workflow"),
    _list("Jenqyang/Awesome-AI-Agents", "workflow"),
    _list("kyrolabs/awesome-ai-tools", "skill"),
    _list("anthropics/claude-code-skills", "skill"),
]


def extract_github_links(markdown: str) -> List[Tuple[str, str]]:
    """
    (title, canonical full_name) for every repo-root GitHub link.

    >>> extract_github_links("- [Foo](https://github.com/Acme/Foo.git) and [x](https://github.com/a/b/issues/1)")
    [('Foo', 'acme/foo')]
    """
    links: List[Tuple[str, str]] = []
    for title, repo_path, rest in _LINK_RE.findall(markdown or ""):
        segment = rest[1:].split("/")[0] if rest.startswith("/") else ""
        if segment.lower() in EXCLUDED_PATHS:
            continue
        full_name = github_full_name_from_url(f"https://github.com/{repo_path}")
        if full_name:
            links.append((title.strip(), full_name))
    return links


class AwesomeListDiscoverer(BaseDiscoverer):
    """Repo links from curated markdown lists."""

    source_name = "awesome-list"
    api_name = "raw_github"

    def __init__(self, lists: Optional[List[DiscoveryQuery]] = None, **kwargs):
        super().__init__(**kwargs)
        self.lists = list(lists) if lists is not None else list(AWESOME_LISTS)

    def default_queries(self) -> List[DiscoveryQuery]:
        return list(self.lists)

    async def fetch_list(self, list_name: str, path: str = "README.md") -> Optional[str]:
        for branch in BRANCHES:
            text = await self.fetcher.get_text(RAW_URL.format(list_name=list_name, branch=branch, path=path))
            if text:
                return text
        return None

    async def discover(self, query: DiscoveryQuery, run: DiscoveryRun) -> AsyncIterator[Candidate]:
        markdown = await self.fetch_list(query.q)
        if markdown is None:
            self.record_error(f"could not fetch README for {query.q}, skipping")
            return

        links = extract_github_links(markdown)
        logger.info(f"  [awesome] {query.q}: {len(links)} GitHub links")

        for title, full_name in links:
            if not self.accept(run, full_name):
                continue
            owner, repo = full_name.split("/")
            yield Candidate(
                full_name=full_name,
                type_hint=query.hint,
                source=self.source_name,
                owner_login=owner,
                repo_name=repo,
                description=title,
                github_url=github_url_for(full_name),
                owner_html_url=f"https://github.com/{owner}",
                insert_only=("description",),
            )
