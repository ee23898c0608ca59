"""
Weekly download counts for the vibe score.

- npm: api.npmjs.org point endpoint, for artifacts with an npm package name,
  5 requests in flight
- PyPI: pypistats.org recent endpoint, for Python artifacts; the package
  name is guessed as the npm package name or the repo name

Missing packages and failed requests count as zero downloads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from collectors.retry_strategy import RetryConfig
from utils.rate_limiter import QuotaAwareFetcher

logger = logging.getLogger(__name__)

NPM_DOWNLOADS_URL = "https://api.npmjs.org/downloads/point/last-week/{package}"
PYPISTATS_URL = "https://pypistats.org/api/packages/{package}/recent"
NPM_CONCURRENCY = 5

Artifact = Dict[str, Any]


def pypi_package_guess(artifact: Artifact) -> Optional[str]:
    if artifact.get("language") != "Python":
        return None
    return artifact.get("npm_package_name") or artifact.get("name") or None


class DownloadCounter:
    """
    Usage:
        async with DownloadCounter() as counter:
            npm = await counter.npm_downloads(artifacts)    # {artifact_id: weekly}
            pypi = await counter.pypi_downloads(artifacts)
    """

    def __init__(
        self,
        npm_fetcher: Optional[QuotaAwareFetcher] = None,
        pypi_fetcher: Optional[QuotaAwareFetcher] = None,
        retry_config: Optional[RetryConfig] = None,
        concurrency: int = NPM_CONCURRENCY,
    ):
        retry_config = retry_config or RetryConfig(max_retries=2)
        self.npm_fetcher = npm_fetcher or QuotaAwareFetcher(retry_config=retry_config, api_name="npm")
        self.pypi_fetcher = pypi_fetcher or QuotaAwareFetcher(retry_config=retry_config, api_name="pypistats")
        self.concurrency = concurrency

    async def __aenter__(self) -> "DownloadCounter":
        await self.npm_fetcher.__aenter__()
        await self.pypi_fetcher.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.npm_fetcher.close()
        await self.pypi_fetcher.close()

    async def npm_weekly(self, package: str) -> int:
        data = await self.npm_fetcher.get_json(NPM_DOWNLOADS_URL.format(package=quote(package, safe="@/")))
        if not isinstance(data, dict):
            return 0
        return int(data.get("downloads") or 0)

    async def pypi_weekly(self, package: str) -> int:
        data = await self.pypi_fetcher.get_json(PYPISTATS_URL.format(package=quote(package, safe="")))
        if not isinstance(data, dict):
            return 0
        return int((data.get("data") or {}).get("last_week") or 0)

    async def npm_downloads(self, artifacts: Sequence[Artifact]) -> Dict[int, int]:
        targets = [a for a in artifacts if a.get("npm_package_name")]
        logger.info(f"[npm] fetching weekly downloads for {len(targets)} packages")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def one(artifact: Artifact) -> int:
            async with semaphore:
                return await self.npm_weekly(artifact["npm_package_name"])

        counts = await asyncio.gather(*(one(a) for a in targets))
        results = {a["id"]: n for a, n in zip(targets, counts)}
        logger.info(f"[npm] {sum(1 for n in counts if n)} packages with downloads")
        return results

    async def pypi_downloads(self, artifacts: Sequence[Artifact]) -> Dict[int, int]:
        targets: List[tuple] = [(a, pypi_package_guess(a)) for a in artifacts]
        targets = [(a, pkg) for a, pkg in targets if pkg]
        logger.info(f"[pypi] fetching weekly downloads for {len(targets)} packages")

        results: Dict[int, int] = {}
        for artifact, package in targets:
            downloads = await self.pypi_weekly(package)
            if downloads:
                results[artifact["id"]] = downloads

        logger.info(f"[pypi] {len(results)} packages with downloads")
        return results
