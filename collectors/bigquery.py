"""
BigQuery Discoverer

Bulk discovery over the public GitHub dataset
(bigquery-public-data.github_repos): repos containing signature files
(SKILL.md, .cursorrules, mcp.json) or whose manifests reference key
dependencies. No 1000-result search cap and no star buckets.

Every query is dry-run first and skipped when it would scan more than
SCAN_CEILING_BYTES. Identifiers not already staged are hydrated through the
GitHub repo endpoint; repos that cannot be hydrated are still staged with
the identifier alone.

Credentials: GOOGLE_APPLICATION_CREDENTIALS (file) or
GOOGLE_CREDENTIALS_JSON (inline service-account JSON).
"""

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import bigquery
from google.oauth2 import service_account

from collectors.base import BaseDiscoverer, DiscoveryQuery, DiscoveryRun
from collectors.github import GitHubClient
from storage.staging_store import Candidate
from utils.canonical_keys import github_url_for, normalize_repo_identifier
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

SCAN_CEILING_BYTES = 300e9
BQ_LOCATION = "US"

_FILES = "`bigquery-public-data.github_repos.files`"
_CONTENTS = "`bigquery-public-data.github_repos.contents`"

BQ_SQL: Dict[str, str] = {
    "skill-md": f"""
        SELECT DISTINCT repo_name FROM {_FILES}
        WHERE path = 'SKILL.md' OR path LIKE '%/SKILL.md'""",
    "cursorrules": f"""
        SELECT DISTINCT repo_name FROM {_FILES}
        WHERE path = '.cursorrules'""",
    "mcp-json": f"""
        SELECT DISTINCT repo_name FROM {_FILES}
        WHERE path = 'mcp.json' OR path = 'mcp-config.json'""",
    "npm-mcp-sdk": f"""
        SELECT DISTINCT repo_name FROM {_CONTENTS}
        WHERE path = 'package.json' AND content LIKE '%@modelcontextprotocol/sdk%'""",
    "npm-mcp-framework": f"""
        SELECT DISTINCT repo_name FROM {_CONTENTS}
        WHERE path = 'package.json' AND content LIKE '%mcp-framework%'""",
    "python-mcp": f"""
        SELECT DISTINCT repo_name FROM {_CONTENTS}
        WHERE (path = 'setup.py' OR path = 'pyproject.toml' OR path = 'setup.cfg')
          AND (content LIKE '%mcp-server%' OR content LIKE '%modelcontextprotocol%'
               OR content LIKE '%mcp_server%')""",
    "n8n-package": f"""
        SELECT DISTINCT repo_name FROM {_CONTENTS}
        WHERE path = 'package.json'
          AND (content LIKE '%n8n-community-node-package%' OR content LIKE '%n8n-nodes-%')""",
    "langchain-community": f"""
        SELECT DISTINCT repo_name FROM {_CONTENTS}
        WHERE (path = 'setup.py' OR path = 'pyproject.toml')
          AND (content LIKE '%langchain-community%' OR content LIKE '%langchain_community%')""",
    "crewai-dependency": f"""
        SELECT DISTINCT repo_name FROM {_CONTENTS}
        WHERE (path = 'setup.py' OR path = 'pyproject.toml' OR path = 'requirements.txt')
          AND content LIKE '%crewai%'""",
}

BQ_QUERIES: List[DiscoveryQuery] = [
    DiscoveryQuery(hint="skill", q="skill-md", sort="", pages=1),
    DiscoveryQuery(hint="cursor-rules", q="cursorrules", sort="", pages=1),
    DiscoveryQuery(hint="mcp-server", q="mcp-json", sort="", pages=1),
    DiscoveryQuery(hint="mcp-server", q="npm-mcp-sdk", sort="", pages=1),
    DiscoveryQuery(hint="mcp-server", q="npm-mcp-framework", sort="", pages=1),
    DiscoveryQuery(hint="mcp-server", q="python-mcp", sort="", pages=1),
    DiscoveryQuery(hint="n8n-node", q="n8n-package", sort="", pages=1),
    DiscoveryQuery(hint="langchain-tool", q="langchain-community", sort="", pages=1),
    DiscoveryQuery(hint="crewai-tool", q="crewai-dependency", sort="", pages=1),
]


def bigquery_credentials_available() -> bool:
    return bool(os.environ.get("GOOGLE_APPLICATION_CREDENTIALS") or os.environ.get("GOOGLE_CREDENTIALS_JSON"))


def create_bigquery_client(credentials_json: Optional[str] = None) -> bigquery.Client:
    """
    BigQuery client from inline service-account JSON, or the default
    credential chain (GOOGLE_APPLICATION_CREDENTIALS).
    """
    credentials_json = credentials_json or os.environ.get("GOOGLE_CREDENTIALS_JSON")
    if credentials_json:
        try:
            info = json.loads(credentials_json)
        except ValueError as e:
            raise ConfigurationError(f"GOOGLE_CREDENTIALS_JSON is not valid JSON: {e}") from e
        credentials = service_account.Credentials.from_service_account_info(info)
        return bigquery.Client(project=info.get("project_id"), credentials=credentials, location=BQ_LOCATION)

    if not os.environ.get("GOOGLE_APPLICATION_CREDENTIALS"):
        raise ConfigurationError("Missing GOOGLE_APPLICATION_CREDENTIALS or GOOGLE_CREDENTIALS_JSON")
    return bigquery.Client(location=BQ_LOCATION)


class BigQueryDiscoverer(BaseDiscoverer):
    """
    Dataset queries plus GitHub hydration for new identifiers.

    The BigQuery client is synchronous; its calls run in worker threads.
    """

    source_name = "bigquery"
    api_name = "github"
    preseed_known = True

    def __init__(
        self,
        client: Optional[Any] = None,
        github: Optional[GitHubClient] = None,
        token: Optional[str] = None,
        queries: Optional[List[DiscoveryQuery]] = None,
        scan_ceiling: float = SCAN_CEILING_BYTES,
        **kwargs,
    ):
        self.github = github or GitHubClient(token=token)
        super().__init__(fetcher=self.github.fetcher, **kwargs)
        self._client = client
        self.queries = list(queries) if queries is not None else list(BQ_QUERIES)
        self.scan_ceiling = scan_ceiling

        self.hydrated = 0
        self.unhydrated = 0
        self.queries_skipped = 0

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_bigquery_client()
        return self._client

    def default_queries(self) -> List[DiscoveryQuery]:
        return list(self.queries)

    def _estimate_bytes(self, sql: str) -> int:
        job_config = bigquery.QueryJobConfig(dry_run=True, use_query_cache=False)
        job = self.client.query(sql, job_config=job_config, location=BQ_LOCATION)
        return int(job.total_bytes_processed or 0)

    def _run_query(self, sql: str) -> List[str]:
        rows = self.client.query(sql, location=BQ_LOCATION).result()
        return [row["repo_name"] for row in rows if row["repo_name"]]

    async def repo_names(self, query: DiscoveryQuery) -> Optional[List[str]]:
        """Repo names for one dataset query; None when skipped or failed."""
        sql = BQ_SQL.get(query.q)
        if sql is None:
            self.record_error(f"unknown dataset query {query.q!r}")
            return None

        try:
            scanned = await asyncio.to_thread(self._estimate_bytes, sql)
            logger.info(f"  [bigquery] {query.q}: dry run {scanned / 1e9:.1f} GB")
            if scanned > self.scan_ceiling:
                self.queries_skipped += 1
                logger.warning(
                    f"  [bigquery] skipping {query.q}: {scanned / 1e9:.1f} GB exceeds "
                    f"{self.scan_ceiling / 1e9:.0f} GB ceiling"
                )
                return None
            return await asyncio.to_thread(self._run_query, sql)
        except google_exceptions.GoogleAPIError as e:
            self.record_error(f"query {query.q} failed: {str(e)[:150]}")
            return None

    async def hydrate(self, full_name: str, hint: str) -> Candidate:
        """GitHub metadata for a repo, or an identifier-only candidate."""
        repo = await self.github.get_repo(full_name) if self.github.token else None
        candidate = Candidate.from_github(repo, hint, source=self.source_name) if repo else None
        if candidate is not None:
            self.hydrated += 1
            return candidate

        self.unhydrated += 1
        owner, name = full_name.split("/")
        return Candidate(
            full_name=full_name,
            type_hint=hint,
            source=self.source_name,
            owner_login=owner,
            repo_name=name,
            github_url=github_url_for(full_name),
        )

    async def discover(self, query: DiscoveryQuery, run: DiscoveryRun) -> AsyncIterator[Candidate]:
        names = await self.repo_names(query)
        if not names:
            return
        logger.info(f"  [bigquery] {query.q}: {len(names)} repos")

        for raw_name in names:
            if run.should_stop():
                return
            full_name = normalize_repo_identifier(raw_name)
            if full_name and self.accept(run, full_name):
                yield await self.hydrate(full_name, query.hint)

    def stats(self) -> Dict[str, int]:
        stats = super().stats()
        stats.update({
            "hydrated": self.hydrated,
            "unhydrated": self.unhydrated,
            "queries_skipped": self.queries_skipped,
        })
        return stats
