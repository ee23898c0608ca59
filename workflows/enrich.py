"""
Enrich mode: classify pending candidates and publish them as artifacts.

    list_pending -> chunks of GEMINI_BATCH -> asyncio.Queue -> N workers

Each worker takes one chunk at a time:
1. Fetch missing READMEs from GitHub and store them on the candidate
2. classify_batch() (batch call, 1-by-1 fallback inside the engine)
3. Build artifact records (trending score, contributor link)
4. Write artifacts; the store links each candidate as enriched
5. Record a failure for every candidate that did not make it

Workers stop taking new chunks once the time budget expires; chunks already
in flight finish and are written.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from collectors.github import GitHubClient
from enrichment.classifier import EnrichmentEngine, build_artifact
from storage.artifact_store import ArtifactRecord, ArtifactStore, ContributorCache
from storage.staging_store import Candidate, CandidateStatus, StagingStore
from utils.canonical_keys import is_github_identifier
from utils.errors import StoreError
from utils.time_budget import TimeBudget
from workflows.config import RunStats

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_BATCH = 5


class EnrichRun:
    """
    One enrichment run: the queue, its workers and the run-scoped caches.

    Usage:
        run = EnrichRun(staging, artifacts, engine, github)
        stats = await run.execute(limit=200)
    """

    def __init__(
        self,
        staging: StagingStore,
        artifacts: ArtifactStore,
        engine: EnrichmentEngine,
        github: Optional[GitHubClient] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        batch_size: int = DEFAULT_BATCH,
        budget: Optional[TimeBudget] = None,
        stats: Optional[RunStats] = None,
    ):
        self.staging = staging
        self.artifacts = artifacts
        self.engine = engine
        self.github = github
        self.concurrency = concurrency
        self.batch_size = batch_size
        self.budget = budget or TimeBudget.unlimited()
        self.stats = stats or RunStats(mode="enrich")
        self.contributors = ContributorCache(artifacts.store)

    async def execute(self, limit: int = 200, type_filter: Optional[str] = None) -> RunStats:
        pending = await self.staging.list_pending(type_filter=type_filter, limit=limit)
        logger.info(f"{len(pending)} candidates pending enrichment")
        if not pending:
            return self.stats

        queue: asyncio.Queue = asyncio.Queue()
        for i in range(0, len(pending), self.batch_size):
            queue.put_nowait(pending[i:i + self.batch_size])

        workers = [
            asyncio.create_task(self._worker(queue, n))
            for n in range(min(self.concurrency, queue.qsize()))
        ]
        await asyncio.gather(*workers)

        if not queue.empty():
            self.stats.budget_expired = True
            logger.info(f"Time budget expired with {queue.qsize()} chunks left for the next run")

        logger.info(
            f"Enrichment complete: {self.stats.enriched} enriched, {self.stats.failed} failed, "
            f"{self.stats.skipped} skipped ({len(self.contributors)} contributors)"
        )
        return self.stats

    async def _worker(self, queue: asyncio.Queue, worker_id: int) -> None:
        while not queue.empty():
            if self.budget.expired():
                logger.info(f"[worker {worker_id}] time budget expired, stopping")
                return

            chunk: List[Candidate] = queue.get_nowait()
            try:
                await self.process_chunk(chunk)
            except Exception as e:
                logger.exception(f"[worker {worker_id}] chunk failed")
                self.stats.errors.append(str(e))
            finally:
                queue.task_done()

    async def process_chunk(self, chunk: Sequence[Candidate]) -> None:
        await self._ensure_readmes(chunk)

        results = await self.engine.classify_batch(chunk)

        records: List[ArtifactRecord] = []
        for candidate, fields in zip(chunk, results):
            if fields is None:
                await self._record_failure(candidate.full_name, "classification failed")
                continue
            contributor_id = await self.contributors.ensure(candidate)
            records.append(build_artifact(candidate, fields, contributor_id=contributor_id))

        if not records:
            return

        outcome = await self.artifacts.write_artifacts(records)
        self.stats.enriched += outcome.count
        for full_name, error in outcome.failed.items():
            await self._record_failure(full_name, f"artifact write failed: {error}")

    async def _ensure_readmes(self, chunk: Sequence[Candidate]) -> None:
        if self.github is None:
            return
        for candidate in chunk:
            if candidate.readme_raw or not is_github_identifier(candidate.full_name):
                continue
            text = await self.github.get_readme(candidate.full_name)
            if not text:
                continue
            candidate.readme_raw = text
            self.stats.readmes_fetched += 1
            try:
                await self.staging.store_readme(candidate.full_name, text)
            except StoreError as e:
                logger.warning(f"Could not store README for {candidate.full_name}: {e}")

    async def _record_failure(self, full_name: str, error: str) -> None:
        try:
            status = await self.staging.mark_result(full_name, CandidateStatus.FAILED, error)
        except StoreError as e:
            logger.warning(f"Could not record failure for {full_name}: {e}")
            self.stats.failed += 1
            return

        if status == CandidateStatus.SKIPPED:
            self.stats.skipped += 1
        else:
            self.stats.failed += 1
        logger.warning(f"{full_name}: {error} ({status.value})")


async def run_enrich(
    staging: StagingStore,
    artifacts: ArtifactStore,
    engine: EnrichmentEngine,
    github: Optional[GitHubClient] = None,
    limit: int = 200,
    type_filter: Optional[str] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    batch_size: int = DEFAULT_BATCH,
    budget: Optional[TimeBudget] = None,
    stats: Optional[RunStats] = None,
) -> RunStats:
    run = EnrichRun(
        staging,
        artifacts,
        engine,
        github=github,
        concurrency=concurrency,
        batch_size=batch_size,
        budget=budget,
        stats=stats,
    )
    return await run.execute(limit=limit, type_filter=type_filter)
