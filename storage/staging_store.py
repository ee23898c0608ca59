"""
Staging store for discovered candidates.

Discovery writes here, enrichment reads from here. Two-phase design:

    discover  -> upsert(candidates)           status: pending (new rows only)
    enrich    -> list_pending() -> classify -> mark_result()

Invariants:
- one row per canonical identifier (candidates.full_name)
- re-discovery merges metadata only; status, attempt counter and
  discovered_at are written on first insert and never regressed
- rows are never deleted; "skipped" is terminal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from storage.keyed_store import Filter, KeyedStore, Order, Row
from utils.canonical_keys import github_url_for, normalize_repo_identifier
from utils.errors import StoreError

logger = logging.getLogger(__name__)

CANDIDATES_TABLE = "candidates"
SCRAPER_STATE_TABLE = "scraper_state"

UPSERT_BATCH_SIZE = 20
MAX_ENRICH_ATTEMPTS = 3
DESCRIPTION_MAX_CHARS = 500
README_MAX_CHARS = 50_000


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CandidateStatus(str, Enum):
    PENDING = "pending"
    ENRICHED = "enriched"
    FAILED = "failed"
    SKIPPED = "skipped"


# Written on every upsert; everything else is insert-only or owned by enrichment
METADATA_COLUMNS = (
    "owner_login",
    "repo_name",
    "description",
    "language",
    "stars",
    "forks",
    "open_issues",
    "license",
    "default_branch",
    "topics",
    "github_url",
    "owner_avatar_url",
    "owner_html_url",
    "github_created_at",
    "github_updated_at",
    "readme_raw",
)


@dataclass
class Candidate:
    """A discovered repository or package awaiting enrichment."""

    full_name: str
    type_hint: str = "skill"
    source: str = "github"
    owner_login: Optional[str] = None
    repo_name: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    stars: Optional[int] = None
    forks: Optional[int] = None
    open_issues: Optional[int] = None
    license: Optional[str] = None
    default_branch: Optional[str] = None
    topics: Optional[List[str]] = None
    github_url: Optional[str] = None
    owner_avatar_url: Optional[str] = None
    owner_html_url: Optional[str] = None
    github_created_at: Optional[str] = None
    github_updated_at: Optional[str] = None
    readme_raw: Optional[str] = None

    # Columns this source only supplies for a first-time insert
    insert_only: Tuple[str, ...] = ()

    # Enrichment state (owned by the store)
    id: Optional[int] = None
    enrichment_status: str = CandidateStatus.PENDING.value
    enrich_attempts: int = 0
    enrichment_error: Optional[str] = None
    enriched_at: Optional[str] = None
    artifact_id: Optional[int] = None

    def __post_init__(self):
        if self.description and len(self.description) > DESCRIPTION_MAX_CHARS:
            self.description = self.description[:DESCRIPTION_MAX_CHARS]
        if self.readme_raw and len(self.readme_raw) > README_MAX_CHARS:
            self.readme_raw = self.readme_raw[:README_MAX_CHARS]

    @property
    def name(self) -> str:
        return self.repo_name or self.full_name.split("/")[-1].split(":")[-1]

    @property
    def owner(self) -> Optional[str]:
        if self.owner_login:
            return self.owner_login
        if "/" in self.full_name and ":" not in self.full_name:
            return self.full_name.split("/")[0]
        return None

    @classmethod
    def from_github(cls, repo: Dict[str, Any], type_hint: str, source: str = "github") -> Optional["Candidate"]:
        """Build from a GitHub REST repository object; None if it has no usable name."""
        full_name = normalize_repo_identifier(repo.get("full_name") or "")
        if not full_name:
            return None

        owner = repo.get("owner") or {}
        license_info = repo.get("license") or {}

        return cls(
            full_name=full_name,
            type_hint=type_hint,
            source=source,
            owner_login=owner.get("login"),
            repo_name=repo.get("name"),
            description=repo.get("description") or "",
            language=repo.get("language"),
            stars=repo.get("stargazers_count") or 0,
            forks=repo.get("forks_count") or 0,
            open_issues=repo.get("open_issues_count") or 0,
            license=license_info.get("spdx_id"),
            default_branch=repo.get("default_branch") or "main",
            topics=list(repo.get("topics") or []),
            github_url=repo.get("html_url") or github_url_for(full_name),
            owner_avatar_url=owner.get("avatar_url"),
            owner_html_url=owner.get("html_url"),
            github_created_at=repo.get("created_at"),
            github_updated_at=repo.get("pushed_at") or repo.get("updated_at"),
        )

    @classmethod
    def from_row(cls, row: Row) -> "Candidate":
        known = cls.__dataclass_fields__.keys()
        data = {k: v for k, v in row.items() if k in known}
        if data.get("topics") is None:
            data["topics"] = []
        return cls(**data)

    def metadata_row(self) -> Row:
        """Columns a re-discovery may overwrite (None values and insert-only columns omitted)."""
        row: Row = {"full_name": self.full_name}
        for col in METADATA_COLUMNS:
            value = getattr(self, col)
            if value is not None and col not in self.insert_only:
                row[col] = value
        return row

    def insert_row(self, now: str) -> Row:
        """Full row for a first-time insert."""
        row: Row = {"full_name": self.full_name}
        for col in METADATA_COLUMNS:
            value = getattr(self, col)
            if value is not None:
                row[col] = value
        row.update({
            "stars": self.stars or 0,
            "forks": self.forks or 0,
            "open_issues": self.open_issues or 0,
            "type_hint": self.type_hint,
            "source": self.source,
            "enrichment_status": CandidateStatus.PENDING.value,
            "enrich_attempts": 0,
            "discovered_at": now,
        })
        return row


class StagingStore:
    """Candidate staging operations over a KeyedStore."""

    def __init__(
        self,
        store: KeyedStore,
        batch_size: int = UPSERT_BATCH_SIZE,
        max_attempts: int = MAX_ENRICH_ATTEMPTS,
    ):
        self.store = store
        self.batch_size = batch_size
        self.max_attempts = max_attempts

    # =========================================================================
    # DISCOVERY SIDE
    # =========================================================================

    async def upsert(self, candidates: Iterable[Candidate]) -> int:
        """
        Stage candidates, merging metadata into existing rows.

        Writes batches of `batch_size`; a failed batch is retried one record
        at a time so a single bad row only loses itself.

        Returns:
            Number of rows written
        """
        unique: Dict[str, Candidate] = {}
        for c in candidates:
            unique[c.full_name] = c
        items = list(unique.values())

        saved = 0
        for i in range(0, len(items), self.batch_size):
            batch = items[i:i + self.batch_size]
            rows = await self._rows_for(batch)
            try:
                await self.store.upsert(CANDIDATES_TABLE, rows, on_conflict="full_name")
                saved += len(rows)
            except StoreError as e:
                logger.warning(f"Batch upsert of {len(rows)} candidates failed ({e}), retrying one by one")
                for row in rows:
                    try:
                        await self.store.upsert(CANDIDATES_TABLE, [row], on_conflict="full_name")
                        saved += 1
                    except StoreError as row_error:
                        logger.warning(f"Failed to stage {row['full_name']}: {row_error}")

        return saved

    async def _rows_for(self, batch: List[Candidate]) -> List[Row]:
        existing = await self.store.select(
            CANDIDATES_TABLE,
            [Filter.in_("full_name", [c.full_name for c in batch])],
            columns=["full_name"],
        )
        known = {r["full_name"] for r in existing}
        now = utc_now_iso()

        rows = []
        for c in batch:
            row = c.metadata_row() if c.full_name in known else c.insert_row(now)
            row["updated_at"] = now
            rows.append(row)
        return rows

    async def known_identifiers(self, source: Optional[str] = None, page_size: int = 1000) -> Set[str]:
        """All staged identifiers (optionally for one source), paged."""
        filters = [Filter.eq("source", source)] if source else []
        known: Set[str] = set()
        offset = 0
        while True:
            rows = await self.store.select(
                CANDIDATES_TABLE,
                filters,
                columns=["full_name"],
                order=Order("id"),
                limit=page_size,
                offset=offset,
            )
            known.update(r["full_name"] for r in rows)
            if len(rows) < page_size:
                break
            offset += page_size
        return known

    async def record_partition(self, query_key: str, last_page: int, last_bucket_idx: int) -> None:
        """Informational cursor: the last partition a search query completed."""
        try:
            await self.store.upsert(
                SCRAPER_STATE_TABLE,
                [{
                    "query_key": query_key,
                    "last_page": last_page,
                    "last_bucket_idx": last_bucket_idx,
                    "updated_at": utc_now_iso(),
                }],
                on_conflict="query_key",
            )
        except StoreError as e:
            logger.debug(f"Could not record scraper state for {query_key}: {e}")

    # =========================================================================
    # ENRICHMENT SIDE
    # =========================================================================

    async def list_pending(self, type_filter: Optional[str] = None, limit: int = 200) -> List[Candidate]:
        """Pending or failed candidates still under the attempt cap, most-starred first."""
        filters = [
            Filter.in_("enrichment_status", [CandidateStatus.PENDING.value, CandidateStatus.FAILED.value]),
            Filter.lt("enrich_attempts", self.max_attempts),
        ]
        if type_filter:
            filters.append(Filter.eq("type_hint", type_filter))

        rows = await self.store.select(
            CANDIDATES_TABLE,
            filters,
            order=Order("stars", descending=True),
            limit=limit,
        )
        return [Candidate.from_row(r) for r in rows]

    async def mark_result(
        self,
        full_name: str,
        status: CandidateStatus,
        error: Optional[str] = None,
    ) -> CandidateStatus:
        """
        Record the outcome of one enrichment attempt.

        A failure increments the attempt counter; reaching `max_attempts`
        moves the candidate to SKIPPED.

        Returns:
            The status actually written
        """
        status = CandidateStatus(status)
        now = utc_now_iso()

        if status == CandidateStatus.ENRICHED:
            values: Row = {
                "enrichment_status": status.value,
                "enrichment_error": None,
                "enriched_at": now,
                "updated_at": now,
            }
        else:
            rows = await self.store.select(
                CANDIDATES_TABLE,
                [Filter.eq("full_name", full_name)],
                columns=["enrich_attempts"],
            )
            attempts = (rows[0].get("enrich_attempts") or 0) + 1 if rows else 1
            if status == CandidateStatus.FAILED and attempts >= self.max_attempts:
                status = CandidateStatus.SKIPPED
                logger.info(f"{full_name}: {attempts} failed attempts, marking skipped")
            values = {
                "enrichment_status": status.value,
                "enrich_attempts": attempts,
                "enrichment_error": (error or "")[:500] or None,
                "updated_at": now,
            }

        await self.store.update(CANDIDATES_TABLE, [Filter.eq("full_name", full_name)], values)
        return status

    async def store_readme(self, full_name: str, text: str) -> None:
        """Persist a lazily fetched README (truncated)."""
        await self.store.update(
            CANDIDATES_TABLE,
            [Filter.eq("full_name", full_name)],
            {"readme_raw": text[:README_MAX_CHARS], "updated_at": utc_now_iso()},
        )
