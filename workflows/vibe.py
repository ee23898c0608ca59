"""
Vibe-score mode: recompute social signals for every active artifact.

1. Load active artifacts
2. Collect weekly downloads (npm, PyPI) and mentions (HN, Reddit, Dev.to)
   concurrently; each source walks the artifacts sequentially
3. Upsert mentions on (source, external_id)
4. Score sentiment with Gemini, only for artifacts that have mentions, and
   backfill it onto mentions that have none yet
5. Compute the breakdown and apply a partial update per artifact

Only artifacts that every mention source searched are scored; when the time
budget cuts a walk short the rest keep their stored score until the next run.
A failed update for one artifact is logged and the run continues.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from collectors.downloads import DownloadCounter
from collectors.mentions import Mention, MentionSource
from enrichment.sentiment import SentimentAnalyzer, SentimentItem
from scoring.vibe import VibeBreakdown, VibeInputs, summarize_mentions
from storage.artifact_store import ArtifactStore
from utils.errors import StoreError
from utils.time_budget import TimeBudget
from workflows.config import RunStats

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 500


def merge_mentions(per_source: Sequence[Dict[int, List[Mention]]]) -> Dict[int, List[Mention]]:
    merged: Dict[int, List[Mention]] = {}
    for by_artifact in per_source:
        for artifact_id, mentions in by_artifact.items():
            merged.setdefault(artifact_id, []).extend(mentions)
    return merged


async def score_sentiment(
    analyzer: Optional[SentimentAnalyzer],
    artifacts: Sequence[Dict],
    mentions: Dict[int, List[Mention]],
) -> Dict[int, float]:
    """Sentiment per artifact id; empty when there is no analyzer."""
    targets = [a for a in artifacts if a["id"] in mentions]
    if analyzer is None or not targets:
        logger.warning("Skipping sentiment (no Gemini key or no mentions)")
        return {}

    logger.info(f"Analyzing sentiment for {len(targets)} artifacts")
    items = [
        SentimentItem(name=a["name"], mentions=[vars(m) for m in mentions[a["id"]]])
        for a in targets
    ]
    scores = await analyzer.score(items)
    return {a["id"]: s for a, s in zip(targets, scores)}


async def run_vibe(
    artifacts: ArtifactStore,
    sources: Sequence[MentionSource],
    downloads: DownloadCounter,
    sentiment: Optional[SentimentAnalyzer] = None,
    budget: Optional[TimeBudget] = None,
    stats: Optional[RunStats] = None,
    now: Optional[datetime] = None,
) -> RunStats:
    stats = stats or RunStats(mode="vibe-score")
    budget = budget or TimeBudget.unlimited()
    now = now or datetime.now(timezone.utc)

    active = await artifacts.load_active()
    if not active:
        logger.warning("No active artifacts found")
        return stats

    logger.info("=== Collecting signals ===")
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(downloads)
        for source in sources:
            await stack.enter_async_context(source)

        npm_map, pypi_map, *per_source = await asyncio.gather(
            downloads.npm_downloads(active),
            downloads.pypi_downloads(active),
            *(source.collect(active, budget) for source in sources),
        )

    mentions = merge_mentions(per_source)
    logger.info(f"{len(mentions)} artifacts have social mentions")

    for artifact_id, items in mentions.items():
        stats.mentions += await artifacts.upsert_mentions([m.to_row(artifact_id) for m in items])
    logger.info(f"Stored {stats.mentions} mentions")

    scored = [a for a in active if all(source.covers(a) for source in sources)]
    if len(scored) < len(active):
        stats.skipped += len(active) - len(scored)
        logger.info(f"Time budget expired: {len(active) - len(scored)} artifacts keep their previous vibe score")

    sentiment_map = await score_sentiment(sentiment, scored, mentions)
    for artifact_id, value in sentiment_map.items():
        try:
            await artifacts.backfill_sentiment(artifact_id, value)
        except StoreError as e:
            logger.warning(f"Sentiment backfill failed for artifact {artifact_id}: {e}")

    logger.info("=== Computing vibe scores ===")
    for i, artifact in enumerate(scored):
        artifact_id = artifact["id"]
        summary = summarize_mentions((vars(m) for m in mentions.get(artifact_id, [])), now=now)
        inputs = VibeInputs(
            npm_downloads=npm_map.get(artifact_id) or artifact.get("npm_downloads_weekly") or 0,
            pypi_downloads=pypi_map.get(artifact_id, 0),
            mentions_7d=summary["mentions_7d"],
            mentions_30d=summary["mentions_30d"],
            avg_score=summary["avg_score"],
            sentiment_avg=sentiment_map.get(artifact_id, 0.0),
        )
        breakdown = VibeBreakdown.compute(inputs)

        try:
            await artifacts.apply_vibe(artifact_id, breakdown, inputs)
            stats.updated += 1
        except StoreError as e:
            logger.warning(f"Update failed for {artifact.get('slug')}: {str(e)[:80]}")
            stats.errors.append(f"{artifact.get('slug')}: {e}")

        if i and i % PROGRESS_EVERY == 0:
            logger.info(f"  Updated {stats.updated}/{len(scored)}")

    stats.budget_expired = budget.expired()
    logger.info(f"Vibe score complete: {stats.updated} artifacts updated, {stats.mentions} mentions stored")
    return stats
