"""
Pipeline configuration, run statistics and store selection.

Usage:
    config = PipelineConfig.from_env()
    config.validate(PipelineMode.ENRICH)      # raises ConfigurationError
    store = create_store(config)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from storage.keyed_store import KeyedStore
from storage.sqlite_store import SQLiteStore
from storage.supabase_store import SupabaseStore
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

ALL_SOURCES = ("github", "bigquery", "npm", "pypi", "awesome")


# =============================================================================
# CONFIGURATION
# =============================================================================

class PipelineMode(str, Enum):
    """Pipeline execution mode"""
    DISCOVER = "discover"        # Stage candidates from every source
    ENRICH = "enrich"            # Classify pending candidates into artifacts
    VIBE_SCORE = "vibe-score"    # Recompute social signals for artifacts
    BULK = "bulk"                # Full discover, then a large enrich
    INCREMENTAL = "incremental"  # Recently pushed repos only, then enrich


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class PipelineConfig:
    """Configuration for pipeline runs"""

    # Storage
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: str = "radar.db"

    # Credentials
    github_token: Optional[str] = None
    gemini_api_key: Optional[str] = None
    google_credentials: bool = False
    reddit_client_id: Optional[str] = None
    reddit_client_secret: Optional[str] = None

    # Enrichment
    enrich_limit: int = 200
    enrich_concurrency: int = 5
    gemini_batch: int = 5
    gemini_model: str = "gemini-2.5-flash"
    max_enrich_attempts: int = 3

    # Run shape
    sources: List[str] = field(default_factory=lambda: list(ALL_SOURCES))
    type_filter: Optional[str] = None
    time_budget_minutes: Optional[float] = None
    discover_cap: int = 0

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load configuration from environment variables"""
        return cls(
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
            db_path=os.getenv("RADAR_DB_PATH", "radar.db"),
            github_token=os.getenv("GITHUB_PAT") or os.getenv("GITHUB_TOKEN") or None,
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
            google_credentials=bool(
                os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or os.getenv("GOOGLE_CREDENTIALS_JSON")
            ),
            reddit_client_id=os.getenv("REDDIT_CLIENT_ID") or None,
            reddit_client_secret=os.getenv("REDDIT_CLIENT_SECRET") or None,
            enrich_limit=_env_int("ENRICH_LIMIT", 200),
            enrich_concurrency=_env_int("ENRICH_CONCURRENCY", 5),
            gemini_batch=_env_int("GEMINI_BATCH", 5),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            max_enrich_attempts=_env_int("MAX_ENRICH_ATTEMPTS", 3),
        )

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def validate(self, mode: PipelineMode) -> None:
        """Fail fast, before any side effect, on settings the mode cannot run without."""
        mode = PipelineMode(mode)

        if bool(self.supabase_url) != bool(self.supabase_key):
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set together")

        unknown = [s for s in self.sources if s not in ALL_SOURCES]
        if unknown:
            raise ConfigurationError(f"Unknown sources: {', '.join(unknown)} (choose from {', '.join(ALL_SOURCES)})")

        if mode in (PipelineMode.ENRICH, PipelineMode.BULK, PipelineMode.INCREMENTAL) and not self.gemini_api_key:
            raise ConfigurationError(f"GEMINI_API_KEY is required for {mode.value}")

        for name in ("enrich_limit", "enrich_concurrency", "gemini_batch", "max_enrich_attempts"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")

        if self.time_budget_minutes is not None and self.time_budget_minutes <= 0:
            raise ConfigurationError("--time-budget must be positive")

        if not self.github_token:
            logger.warning("GITHUB_PAT not set - GitHub calls are unauthenticated and heavily rate limited")


def create_store(config: PipelineConfig) -> KeyedStore:
    """Supabase when configured, otherwise the local SQLite store."""
    if config.uses_supabase:
        logger.info(f"Using Supabase store at {config.supabase_url}")
        return SupabaseStore(config.supabase_url, config.supabase_key)
    logger.info(f"Using SQLite store at {config.db_path}")
    return SQLiteStore(config.db_path)


# =============================================================================
# RUN STATISTICS
# =============================================================================

@dataclass
class RunStats:
    """Statistics from one pipeline run"""

    mode: str = ""

    # Discovery
    discovered: int = 0
    saved: int = 0
    duplicates: int = 0

    # Enrichment
    enriched: int = 0
    failed: int = 0
    skipped: int = 0
    readmes_fetched: int = 0

    # Vibe score
    updated: int = 0
    mentions: int = 0

    budget_expired: bool = False
    sources: Dict[str, Dict[str, int]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    # Timing
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def complete(self):
        """Mark run as completed"""
        self.completed_at = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def merge(self, other: RunStats) -> None:
        """Fold a sub-run (discover inside bulk) into this one."""
        for name in ("discovered", "saved", "duplicates", "enriched", "failed", "skipped",
                     "readmes_fetched", "updated", "mentions"):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.budget_expired = self.budget_expired or other.budget_expired
        self.sources.update(other.sources)
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/display"""
        return {
            "mode": self.mode,
            "discovery": {
                "discovered": self.discovered,
                "saved": self.saved,
                "duplicates": self.duplicates,
            },
            "enrichment": {
                "enriched": self.enriched,
                "failed": self.failed,
                "skipped": self.skipped,
                "readmes_fetched": self.readmes_fetched,
            },
            "vibe": {
                "updated": self.updated,
                "mentions": self.mentions,
            },
            "budget_expired": self.budget_expired,
            "sources": self.sources,
            "errors": self.errors,
            "timing": {
                "started_at": self.started_at.isoformat(),
                "completed_at": self.completed_at.isoformat() if self.completed_at else None,
                "duration_seconds": self.duration_seconds,
            },
        }
