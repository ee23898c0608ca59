"""
Discover mode: drive the source discoverers into the staging store.

Sources run sequentially and share one DiscoveryRun (seen set, time budget,
cap). Candidates are buffered and flushed every FLUSH_EVERY; the remainder
is always flushed, including when the budget expires or a source fails.

Usage:
    stats = await run_discover(staging, build_discoverers(config, staging), budget)
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from collectors.awesome_lists import AwesomeListDiscoverer
from collectors.base import BaseDiscoverer, DiscoveryQuery, DiscoveryRun
from collectors.bigquery import BigQueryDiscoverer
from collectors.github import GitHubDiscoverer, incremental_queries
from collectors.npm import NpmDiscoverer
from collectors.pypi import PyPIDiscoverer
from storage.staging_store import Candidate, StagingStore
from utils.time_budget import TimeBudget
from workflows.config import PipelineConfig, RunStats

logger = logging.getLogger(__name__)

FLUSH_EVERY = 50
INCREMENTAL_CAP = 500

SourcePlan = Tuple[BaseDiscoverer, Optional[List[DiscoveryQuery]]]


def build_discoverers(
    config: PipelineConfig,
    staging: StagingStore,
    incremental: bool = False,
) -> List[SourcePlan]:
    """
    Discoverers for the configured sources, in run order.

    Incremental runs only search GitHub for recently pushed repos.
    """
    if incremental:
        github = GitHubDiscoverer(token=config.github_token, on_partition=staging.record_partition)
        queries = incremental_queries(github.default_queries())
        return [(github, queries)]

    plans: List[SourcePlan] = []
    for source in config.sources:
        if source == "github":
            plans.append((GitHubDiscoverer(token=config.github_token, on_partition=staging.record_partition), None))
        elif source == "bigquery":
            if not config.google_credentials:
                logger.warning("BigQuery credentials not set - skipping bigquery source")
                continue
            plans.append((BigQueryDiscoverer(token=config.github_token), None))
        elif source == "npm":
            plans.append((NpmDiscoverer(), None))
        elif source == "pypi":
            plans.append((PyPIDiscoverer(), None))
        elif source == "awesome":
            plans.append((AwesomeListDiscoverer(), None))
    return plans


async def _flush(staging: StagingStore, buffer: List[Candidate], stats: RunStats) -> None:
    if not buffer:
        return
    saved = await staging.upsert(buffer)
    stats.saved += saved
    logger.info(f"Staged {saved}/{len(buffer)} candidates ({stats.saved} total)")
    buffer.clear()


async def run_source(
    discoverer: BaseDiscoverer,
    staging: StagingStore,
    run: DiscoveryRun,
    stats: RunStats,
    queries: Optional[Sequence[DiscoveryQuery]] = None,
    flush_every: int = FLUSH_EVERY,
) -> None:
    """Run one discoverer to completion (or budget expiry) with buffered staging."""
    buffer: List[Candidate] = []
    try:
        async with discoverer:
            if discoverer.preseed_known:
                discoverer.seed_known(await staging.known_identifiers())

            async for candidate in discoverer.stream(run, queries):
                stats.discovered += 1
                buffer.append(candidate)
                if len(buffer) >= flush_every:
                    await _flush(staging, buffer, stats)

    except Exception as e:
        logger.exception(f"Error running discoverer {discoverer.source_name}")
        stats.errors.append(f"{discoverer.source_name}: {e}")

    finally:
        await _flush(staging, buffer, stats)
        stats.sources[discoverer.source_name] = discoverer.stats()
        stats.errors.extend(f"{discoverer.source_name}: {err}" for err in discoverer.errors)


async def run_discover(
    staging: StagingStore,
    plans: Sequence[SourcePlan],
    budget: Optional[TimeBudget] = None,
    cap: int = 0,
    stats: Optional[RunStats] = None,
) -> RunStats:
    """Discover from every planned source into the staging store."""
    stats = stats or RunStats(mode="discover")
    run = DiscoveryRun(budget=budget or TimeBudget.unlimited(), cap=cap)

    for discoverer, queries in plans:
        if run.should_stop():
            logger.info(f"Stopping before {discoverer.source_name}: {run.budget}")
            break
        logger.info(f"=== Discovering from {discoverer.source_name} ===")
        await run_source(discoverer, staging, run, stats, queries)

    stats.duplicates = run.duplicates
    stats.budget_expired = run.budget.expired()
    logger.info(
        f"Discovery complete: {stats.discovered} new, {stats.saved} staged, "
        f"{stats.duplicates} duplicates"
    )
    return stats
