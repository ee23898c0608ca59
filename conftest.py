"""
Root-level pytest configuration for Artifact Radar.

Configures:
- pytest-asyncio for async test support
- Custom markers (integration, etc.)
- Shared fixtures: an in-memory SQLite store, staging/artifact facades,
  candidate factories, a scripted Gemini client and a MockTransport fetcher
"""

from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from collectors.retry_strategy import RetryConfig
from storage.artifact_store import ArtifactStore
from storage.keyed_store import KeyedStore
from storage.sqlite_store import SQLiteStore
from storage.staging_store import Candidate, StagingStore
from utils.errors import StoreError
from utils.rate_limiter import QuotaAwareFetcher, reset_limiters


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    # Register custom markers to avoid warnings
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (may require network access)"
    )
    config.addinivalue_line(
        "markers",
        "asyncio: marks tests as async (automatically handled by pytest-asyncio)"
    )


pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def fresh_rate_limiters():
    """Every test starts with full token buckets."""
    reset_limiters()
    yield
    reset_limiters()


# =============================================================================
# STORES
# =============================================================================

@pytest_asyncio.fixture
async def sqlite_store():
    store = SQLiteStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def staging(sqlite_store):
    return StagingStore(sqlite_store, max_attempts=3)


@pytest.fixture
def artifacts(sqlite_store):
    return ArtifactStore(sqlite_store)


class FlakyStore(KeyedStore):
    """
    Delegates to a real store, raising StoreError for writes that match.

    `fail_upsert(table, rows)` / `fail_update(table, values)` decide per call.
    """

    def __init__(self, inner: KeyedStore):
        self.inner = inner
        self.fail_upsert: Callable[[str, List[Dict]], bool] = lambda table, rows: False
        self.fail_update: Callable[[str, Dict], bool] = lambda table, values: False
        self.upsert_calls: List[tuple] = []

    async def upsert(self, table, rows, on_conflict):
        self.upsert_calls.append((table, len(rows)))
        if self.fail_upsert(table, rows):
            raise StoreError(f"rejected write to {table}", status_code=400)
        return await self.inner.upsert(table, rows, on_conflict)

    async def select(self, table, filters=(), columns=None, order=None, limit=None, offset=0):
        return await self.inner.select(table, filters, columns, order, limit, offset)

    async def update(self, table, filters, values):
        if self.fail_update(table, values):
            raise StoreError(f"rejected update of {table}", status_code=400)
        return await self.inner.update(table, filters, values)


@pytest.fixture
def flaky_store(sqlite_store):
    return FlakyStore(sqlite_store)


# =============================================================================
# CANDIDATES
# =============================================================================

@pytest.fixture
def make_candidate():
    """Factory: make_candidate("acme/tool", stars=10, ...)"""
    def _make(full_name: str = "acme/tool", **overrides) -> Candidate:
        owner, _, name = full_name.partition("/")
        fields = dict(
            full_name=full_name,
            type_hint="mcp-server",
            source="github",
            owner_login=owner if name else None,
            repo_name=name or full_name,
            description=f"{name or full_name} description",
            language="TypeScript",
            stars=10,
            forks=1,
            topics=["mcp"],
            github_updated_at="2026-10-01T00:00:00Z",
        )
        fields.update(overrides)
        return Candidate(**fields)
    return _make


def github_repo(full_name: str, stars: int = 10, **overrides) -> Dict:
    """Minimal GitHub REST repository object."""
    owner, name = full_name.split("/")
    repo = {
        "full_name": full_name,
        "name": name,
        "owner": {"login": owner, "avatar_url": f"https://avatars.example/{owner}", "html_url": f"https://github.com/{owner}"},
        "description": f"{name} repo",
        "language": "Python",
        "stargazers_count": stars,
        "forks_count": 2,
        "open_issues_count": 0,
        "license": {"spdx_id": "MIT"},
        "default_branch": "main",
        "topics": ["mcp"],
        "html_url": f"https://github.com/{full_name}",
        "created_at": "2025-01-01T00:00:00Z",
        "pushed_at": "2026-10-10T00:00:00Z",
    }
    repo.update(overrides)
    return repo


@pytest.fixture
def make_repo():
    return github_repo


# =============================================================================
# FAKE CLIENTS
# =============================================================================

class ScriptedGemini:
    """
    Stand-in for GeminiClient.generate().

    `responder(prompt, kwargs)` returns text or raises; every call is recorded.
    """

    def __init__(self, responder: Callable[[str, Dict], str]):
        self.responder = responder
        self.calls: List[Dict] = []

    async def generate(self, prompt: str, **kwargs) -> str:
        self.calls.append({"prompt": prompt, **kwargs})
        return self.responder(prompt, kwargs)


@pytest.fixture
def scripted_gemini():
    return ScriptedGemini


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def mock_fetcher():
    """
    Factory: mock_fetcher(handler, api_name=None) -> QuotaAwareFetcher

    `handler(request) -> httpx.Response` runs on an httpx.MockTransport;
    retries never sleep.
    """
    def _make(handler: Callable[[httpx.Request], httpx.Response], api_name: Optional[str] = None,
              max_retries: int = 1, default_headers: Optional[Dict[str, str]] = None) -> QuotaAwareFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return QuotaAwareFetcher(
            client=client,
            retry_config=RetryConfig(max_retries=max_retries),
            api_name=api_name,
            default_headers=default_headers,
            sleep=no_sleep,
        )
    return _make
