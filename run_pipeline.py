#!/usr/bin/env python3
"""
CLI interface for the Artifact Radar pipeline.

Commands:
  discover     - Stage candidates from GitHub, BigQuery, npm, PyPI and awesome-lists
  enrich       - Classify pending candidates with Gemini and publish artifacts
  vibe-score   - Recompute downloads, mentions, sentiment and vibe scores
  bulk         - Full discover (every query and partition), then a large enrich
  incremental  - Discover recently pushed repos only, then enrich

Examples:
  # Discover from registries only, stop after 20 minutes
  python run_pipeline.py discover --sources npm,pypi,awesome --time-budget 20

  # Enrich up to 500 pending MCP servers
  python run_pipeline.py enrich --limit 500 --type mcp-server

  # Nightly vibe refresh, results to JSON
  python run_pipeline.py vibe-score --output vibe.json

Exit codes: 0 on completion (including per-item failures), 1 on
configuration or fatal errors, 130 when interrupted.
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple

from dotenv import load_dotenv

from collectors.devto import DevToSource
from collectors.downloads import DownloadCounter
from collectors.github import GitHubClient
from collectors.hacker_news import HackerNewsSource
from collectors.reddit import RedditSource
from enrichment.classifier import EnrichmentEngine
from enrichment.gemini_client import GeminiClient, GeminiConfig
from enrichment.sentiment import SentimentAnalyzer
from enrichment.taxonomy import ARTIFACT_TYPES
from storage.artifact_store import ArtifactStore
from storage.staging_store import StagingStore
from utils.errors import ConfigurationError
from utils.time_budget import TimeBudget
from workflows.config import ALL_SOURCES, PipelineConfig, PipelineMode, RunStats, create_store
from workflows.discover import INCREMENTAL_CAP, build_discoverers, run_discover
from workflows.enrich import run_enrich
from workflows.vibe import run_vibe

logger = logging.getLogger("run_pipeline")

BULK_ENRICH_LIMIT = 10000


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(verbose: bool = False):
    """Configure logging for the pipeline"""
    level = logging.DEBUG if verbose else logging.INFO

    # Format with colors if terminal supports it
    if sys.stdout.isatty():
        colors = {
            "DEBUG": "\033[36m",    # Cyan
            "INFO": "\033[32m",     # Green
            "WARNING": "\033[33m",  # Yellow
            "ERROR": "\033[31m",    # Red
            "CRITICAL": "\033[35m", # Magenta
            "RESET": "\033[0m",
        }

        class ColoredFormatter(logging.Formatter):
            def format(self, record):
                levelname = record.levelname
                if levelname in colors:
                    record.levelname = f"{colors[levelname]}{levelname}{colors['RESET']}"
                return super().format(record)

        formatter = ColoredFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Reduce noise from some modules
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# CONFIGURATION
# =============================================================================

def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Environment config with command-line overrides, validated for the mode."""
    config = PipelineConfig.from_env()
    mode = PipelineMode(args.command)

    if args.db_path:
        config.db_path = args.db_path
    if args.sources:
        config.sources = [s.strip() for s in args.sources.split(",") if s.strip()]
    if args.type:
        config.type_filter = args.type
    if args.time_budget is not None:
        config.time_budget_minutes = args.time_budget

    if args.limit is not None:
        if mode == PipelineMode.DISCOVER:
            config.discover_cap = args.limit
        else:
            config.enrich_limit = args.limit
    elif mode == PipelineMode.BULK:
        config.enrich_limit = BULK_ENRICH_LIMIT

    config.validate(mode)
    return config


@asynccontextmanager
async def open_stores(config: PipelineConfig) -> AsyncIterator[Tuple[StagingStore, ArtifactStore]]:
    store = create_store(config)
    await store.initialize()
    try:
        yield StagingStore(store, max_attempts=config.max_enrich_attempts), ArtifactStore(store)
    finally:
        await store.close()


def gemini_client(config: PipelineConfig) -> GeminiClient:
    return GeminiClient(GeminiConfig(model=config.gemini_model, api_key=config.gemini_api_key))


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

async def cmd_discover(config: PipelineConfig, budget: TimeBudget, incremental: bool = False) -> RunStats:
    stats = RunStats(mode="incremental" if incremental else "discover")
    cap = INCREMENTAL_CAP if incremental else config.discover_cap
    async with open_stores(config) as (staging, _):
        plans = build_discoverers(config, staging, incremental=incremental)
        return await run_discover(staging, plans, budget=budget, cap=cap, stats=stats)


async def cmd_enrich(config: PipelineConfig, budget: TimeBudget, stats: Optional[RunStats] = None) -> RunStats:
    stats = stats or RunStats(mode="enrich")
    engine = EnrichmentEngine(gemini_client(config))

    async with open_stores(config) as (staging, artifacts), GitHubClient(token=config.github_token) as github:
        await run_enrich(
            staging,
            artifacts,
            engine,
            github=github,
            limit=config.enrich_limit,
            type_filter=config.type_filter,
            concurrency=config.enrich_concurrency,
            batch_size=config.gemini_batch,
            budget=budget,
            stats=stats,
        )

    logger.info(
        f"Gemini calls: {engine.batch_calls} batch, {engine.single_calls} single, "
        f"{engine.fallbacks} batch fallbacks"
    )
    return stats


async def cmd_vibe(config: PipelineConfig, budget: TimeBudget) -> RunStats:
    sources = [
        HackerNewsSource(),
        RedditSource(client_id=config.reddit_client_id or "", client_secret=config.reddit_client_secret or ""),
        DevToSource(),
    ]
    sentiment = SentimentAnalyzer(gemini_client(config)) if config.gemini_api_key else None

    async with open_stores(config) as (_, artifacts):
        return await run_vibe(artifacts, sources, DownloadCounter(), sentiment=sentiment, budget=budget)


async def cmd_two_phase(config: PipelineConfig, budget: TimeBudget, mode: PipelineMode) -> RunStats:
    """Discover then enrich, sharing one time budget (bulk and incremental)."""
    stats = RunStats(mode=mode.value)
    stats.merge(await cmd_discover(config, budget, incremental=mode == PipelineMode.INCREMENTAL))

    if budget.expired():
        logger.info("Time budget expired after discovery, skipping enrichment")
        stats.budget_expired = True
        return stats

    return await cmd_enrich(config, budget, stats=stats)


async def run_command(args: argparse.Namespace) -> RunStats:
    config = build_config(args)
    budget = TimeBudget(config.time_budget_minutes)
    mode = PipelineMode(args.command)

    print("=" * 70)
    print(f"ARTIFACT RADAR - {mode.value.upper()}")
    print("=" * 70)

    if mode == PipelineMode.DISCOVER:
        stats = await cmd_discover(config, budget)
    elif mode == PipelineMode.ENRICH:
        stats = await cmd_enrich(config, budget)
    elif mode == PipelineMode.VIBE_SCORE:
        stats = await cmd_vibe(config, budget)
    else:
        stats = await cmd_two_phase(config, budget, mode)

    stats.complete()
    _print_stats(stats)

    if args.output:
        Path(args.output).write_text(json.dumps(stats.to_dict(), indent=2, default=str))
        print(f"Results saved to: {args.output}")

    return stats


# =============================================================================
# HELPERS
# =============================================================================

def _print_stats(stats: RunStats):
    """Pretty-print run statistics"""
    print()
    if stats.mode in ("discover", "bulk", "incremental"):
        print("DISCOVERY")
        print("-" * 70)
        print(f"Discovered: {stats.discovered}")
        print(f"Saved: {stats.saved}")
        print(f"Duplicates: {stats.duplicates}")
        for source, counts in stats.sources.items():
            print(f"  {source}: {counts.get('candidates_found', 0)} found, "
                  f"{counts.get('requests_failed', 0)} failed requests")
        print()

    if stats.mode in ("enrich", "bulk", "incremental"):
        print("ENRICHMENT")
        print("-" * 70)
        print(f"Enriched: {stats.enriched}")
        print(f"Failed: {stats.failed}")
        print(f"Skipped: {stats.skipped}")
        print(f"READMEs fetched: {stats.readmes_fetched}")
        print()

    if stats.mode == "vibe-score":
        print("VIBE SCORE")
        print("-" * 70)
        print(f"Updated: {stats.updated}")
        print(f"Mentions: {stats.mentions}")
        print()

    if stats.errors:
        print("ERRORS")
        print("-" * 70)
        for error in stats.errors[:20]:
            print(f"  - {error}")
        if len(stats.errors) > 20:
            print(f"  ... and {len(stats.errors) - 20} more")
        print()

    print("TIMING")
    print("-" * 70)
    if stats.budget_expired:
        print("Time budget expired")
    if stats.completed_at:
        print(f"Duration: {stats.duration_seconds:.2f}s")


# =============================================================================
# CLI ARGUMENT PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--limit",
        type=int,
        help="Enrich: max candidates (default ENRICH_LIMIT). Discover: max new candidates.",
    )
    common.add_argument(
        "--time-budget",
        type=float,
        help="Stop cleanly after this many minutes",
    )
    common.add_argument(
        "--type",
        choices=ARTIFACT_TYPES,
        help="Only enrich candidates with this type hint",
    )
    common.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated discovery sources ({','.join(ALL_SOURCES)})",
    )
    common.add_argument(
        "--db-path",
        type=str,
        help="SQLite database path when Supabase is not configured (overrides RADAR_DB_PATH)",
    )
    common.add_argument(
        "--output",
        type=str,
        help="Save run statistics to JSON file",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    parser = argparse.ArgumentParser(
        description="Artifact Radar Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
  SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY  - Canonical store (SQLite when unset)
  RADAR_DB_PATH                             - SQLite path (default: radar.db)
  GITHUB_PAT / GITHUB_TOKEN                 - GitHub API token
  GEMINI_API_KEY                            - Required for enrich, bulk, incremental
  GOOGLE_APPLICATION_CREDENTIALS            - BigQuery (or GOOGLE_CREDENTIALS_JSON)
  REDDIT_CLIENT_ID / REDDIT_CLIENT_SECRET   - Optional Reddit mentions
  ENRICH_LIMIT, ENRICH_CONCURRENCY, GEMINI_BATCH, GEMINI_MODEL, MAX_ENRICH_ATTEMPTS
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    subparsers.add_parser("discover", parents=[common], help="Stage candidates from every source")
    subparsers.add_parser("enrich", parents=[common], help="Classify pending candidates into artifacts")
    subparsers.add_parser("vibe-score", parents=[common], help="Recompute vibe scores")
    subparsers.add_parser("bulk", parents=[common], help="Full discover, then enrich up to 10000")
    subparsers.add_parser("incremental", parents=[common], help="Recently pushed repos, then enrich")

    return parser


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code"""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(verbose=args.verbose)

    try:
        asyncio.run(run_command(args))
        return 0

    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except Exception as e:
        logging.exception("Fatal error")
        print(f"\nFatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
