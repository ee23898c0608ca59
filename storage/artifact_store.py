"""
Persistence for canonical artifacts and their satellites.

- artifacts: upserted on github_repo_full_name in batches, with a
  one-by-one fallback when a batch is rejected
- artifact_platforms: junction rows written after each artifact
- candidates: linked back (artifact_id, enriched) after each artifact
- artifact_mentions / contributors: vibe-score and enrichment side tables

Junction and link writes are best-effort: their failure is logged and never
fails the artifact write that triggered them.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from storage.keyed_store import Filter, KeyedStore, Order, Row
from storage.staging_store import (
    CANDIDATES_TABLE,
    Candidate,
    CandidateStatus,
    UPSERT_BATCH_SIZE,
    utc_now_iso,
)
from utils.errors import StoreError

if TYPE_CHECKING:
    from scoring.vibe import VibeBreakdown, VibeInputs

logger = logging.getLogger(__name__)

ARTIFACTS_TABLE = "artifacts"
PLATFORMS_TABLE = "artifact_platforms"
MENTIONS_TABLE = "artifact_mentions"
CONTRIBUTORS_TABLE = "contributors"

# Columns read by the vibe-score mode
ACTIVE_COLUMNS = (
    "id",
    "slug",
    "name",
    "npm_package_name",
    "github_repo_full_name",
    "stars",
    "language",
    "npm_downloads_weekly",
)


@dataclass
class ArtifactRecord:
    """One row of the artifacts table plus its compatible platforms."""

    github_repo_full_name: str
    slug: str
    name: str
    artifact_type: str
    category: str
    description: str = ""
    long_description: str = ""
    tags: List[str] = field(default_factory=list)
    install_command: Optional[str] = None
    npm_package_name: Optional[str] = None
    github_url: Optional[str] = None
    default_branch: str = "main"
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    language: Optional[str] = None
    license: Optional[str] = None
    github_created_at: Optional[str] = None
    github_updated_at: Optional[str] = None
    readme_raw: Optional[str] = None
    readme_excerpt: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    trending_score: int = 0
    contributor_id: Optional[int] = None
    status: str = "active"
    source: str = "github_scraper"
    last_pipeline_sync: Optional[str] = None

    # Written to artifact_platforms, not to the artifacts row
    platforms: List[str] = field(default_factory=list)

    def to_row(self) -> Row:
        row = asdict(self)
        row.pop("platforms")
        if row["contributor_id"] is None:
            row.pop("contributor_id")
        return row


@dataclass
class UpsertOutcome:
    """Per-identifier result of an artifact write."""
    written: Dict[str, int] = field(default_factory=dict)   # full name -> artifact id
    failed: Dict[str, str] = field(default_factory=dict)    # full name -> error

    @property
    def count(self) -> int:
        return len(self.written)


class ArtifactStore:
    """Artifact, junction, mention and contributor writes over a KeyedStore."""

    def __init__(self, store: KeyedStore, batch_size: int = UPSERT_BATCH_SIZE):
        self.store = store
        self.batch_size = batch_size

    # =========================================================================
    # ARTIFACTS
    # =========================================================================

    async def upsert_artifacts(self, records: Sequence[ArtifactRecord]) -> int:
        """Write artifacts; returns the number written."""
        outcome = await self.write_artifacts(records)
        return outcome.count

    async def write_artifacts(self, records: Sequence[ArtifactRecord]) -> UpsertOutcome:
        outcome = UpsertOutcome()

        for i in range(0, len(records), self.batch_size):
            batch = list(records[i:i + self.batch_size])
            try:
                stored = await self.store.upsert(
                    ARTIFACTS_TABLE,
                    [r.to_row() for r in batch],
                    on_conflict="github_repo_full_name",
                )
            except StoreError as e:
                logger.warning(f"Artifact batch of {len(batch)} failed ({e}), retrying one by one")
                for record in batch:
                    await self._write_one(record, outcome)
                continue

            ids = {row["github_repo_full_name"]: row["id"] for row in stored}
            for record in batch:
                artifact_id = ids.get(record.github_repo_full_name)
                if artifact_id is None:
                    outcome.failed[record.github_repo_full_name] = "no row returned"
                    continue
                outcome.written[record.github_repo_full_name] = artifact_id
                await self._link(record, artifact_id)

            logger.info(f"Batch upserted: {len(stored)} artifacts ({outcome.count} total)")

        return outcome

    async def _write_one(self, record: ArtifactRecord, outcome: UpsertOutcome) -> None:
        try:
            stored = await self.store.upsert(
                ARTIFACTS_TABLE, [record.to_row()], on_conflict="github_repo_full_name"
            )
        except StoreError as e:
            logger.warning(f"Skip artifact {record.github_repo_full_name}: {e}")
            outcome.failed[record.github_repo_full_name] = str(e)
            return

        if not stored:
            outcome.failed[record.github_repo_full_name] = "no row returned"
            return

        artifact_id = stored[0]["id"]
        outcome.written[record.github_repo_full_name] = artifact_id
        await self._link(record, artifact_id)

    async def _link(self, record: ArtifactRecord, artifact_id: int) -> None:
        """Best-effort junction rows and candidate back-link."""
        if record.platforms:
            rows = [{"artifact_id": artifact_id, "platform": p} for p in dict.fromkeys(record.platforms)]
            try:
                await self.store.upsert(PLATFORMS_TABLE, rows, on_conflict="artifact_id,platform")
            except StoreError as e:
                logger.warning(f"Junction issue for {record.github_repo_full_name}: {e}")

        now = utc_now_iso()
        try:
            await self.store.update(
                CANDIDATES_TABLE,
                [Filter.eq("full_name", record.github_repo_full_name)],
                {
                    "artifact_id": artifact_id,
                    "enrichment_status": CandidateStatus.ENRICHED.value,
                    "enrichment_error": None,
                    "enriched_at": now,
                    "updated_at": now,
                },
            )
        except StoreError as e:
            logger.warning(f"Candidate link issue for {record.github_repo_full_name}: {e}")

    async def load_active(self, page_size: int = 1000) -> List[Row]:
        """All active artifacts, most-starred first, read in pages."""
        artifacts: List[Row] = []
        offset = 0
        while True:
            page = await self.store.select(
                ARTIFACTS_TABLE,
                [Filter.eq("status", "active")],
                columns=ACTIVE_COLUMNS,
                order=Order("stars", descending=True),
                limit=page_size,
                offset=offset,
            )
            artifacts.extend(page)
            if len(page) < page_size:
                break
            offset += page_size

        logger.info(f"Loaded {len(artifacts)} active artifacts")
        return artifacts

    async def apply_vibe(self, artifact_id: int, breakdown: "VibeBreakdown", inputs: "VibeInputs") -> None:
        """Partial update: vibe total, components and the inputs they came from."""
        values = {**inputs.to_row(), **breakdown.to_row(), "vibe_updated_at": utc_now_iso()}
        await self.store.update(ARTIFACTS_TABLE, [Filter.eq("id", artifact_id)], values)

    # =========================================================================
    # MENTIONS
    # =========================================================================

    async def upsert_mentions(self, rows: List[Row]) -> int:
        """Upsert mention rows on (source, external_id); returns rows stored."""
        if not rows:
            return 0
        try:
            await self.store.upsert(MENTIONS_TABLE, rows, on_conflict="source,external_id")
            return len(rows)
        except StoreError as e:
            logger.debug(f"Mention batch failed ({e}), retrying one by one")

        stored = 0
        for row in rows:
            try:
                await self.store.upsert(MENTIONS_TABLE, [row], on_conflict="source,external_id")
                stored += 1
            except StoreError as e:
                logger.debug(f"Skip mention {row.get('source')}:{row.get('external_id')}: {e}")
        return stored

    async def backfill_sentiment(self, artifact_id: int, value: float) -> int:
        """Set sentiment on an artifact's mentions that have none yet."""
        updated = await self.store.update(
            MENTIONS_TABLE,
            [Filter.eq("artifact_id", artifact_id), Filter.is_null("sentiment")],
            {"sentiment": value},
        )
        return len(updated)


class ContributorCache:
    """
    Run-scoped owner -> contributor id cache.

    ensure() upserts the contributor and falls back to a lookup when the
    upsert yields no id. Failures return None; artifacts are written
    without a contributor rather than dropped.
    """

    def __init__(self, store: KeyedStore):
        self.store = store
        self._ids: Dict[str, Optional[int]] = {}

    def __len__(self) -> int:
        return len(self._ids)

    async def ensure(self, candidate: Candidate) -> Optional[int]:
        username = candidate.owner
        if not username:
            return None
        if username in self._ids:
            return self._ids[username]

        row = {
            "github_username": username,
            "display_name": username,
            "avatar_url": candidate.owner_avatar_url,
            "github_url": candidate.owner_html_url or f"https://github.com/{username}",
        }

        contributor_id: Optional[int] = None
        try:
            result = await self.store.upsert(CONTRIBUTORS_TABLE, [row], on_conflict="github_username")
            if result:
                contributor_id = result[0].get("id")
        except StoreError as e:
            logger.warning(f"Contributor issue for {username}: {e}")

        if contributor_id is None:
            try:
                existing = await self.store.select(
                    CONTRIBUTORS_TABLE,
                    [Filter.eq("github_username", username)],
                    columns=["id"],
                    limit=1,
                )
                if existing:
                    contributor_id = existing[0]["id"]
            except StoreError as e:
                logger.warning(f"Contributor lookup failed for {username}: {e}")

        if contributor_id is not None:
            self._ids[username] = contributor_id
        return contributor_id
