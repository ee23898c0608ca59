"""
SQLite implementation of the keyed store.

Local stand-in for the canonical REST store, used for development runs
(no SUPABASE_URL configured) and by the test suite with ":memory:".

Tables:
  - candidates: staged discoveries and their enrichment state
  - artifacts: canonical enriched records
  - artifact_platforms: artifact <-> compatible platform junction
  - contributors: repository owners
  - artifact_mentions: social mentions used by vibe scoring
  - scraper_state: last completed search partition per query
  - schema_migrations: applied migrations

Usage:
    store = SQLiteStore("radar.db")
    await store.initialize()

    await store.upsert("candidates", [{"full_name": "acme/tool", "stars": 10}], "full_name")
    rows = await store.select("candidates", [Filter.eq("enrichment_status", "pending")])
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

import aiosqlite

from storage.keyed_store import Filter, KeyedStore, Order, Row
from utils.errors import StoreError

logger = logging.getLogger(__name__)


# =============================================================================
# SCHEMA VERSION
# =============================================================================

CURRENT_SCHEMA_VERSION = 2

MIGRATIONS = {
    1: """
    -- Staged candidates: one row per canonical identifier
    CREATE TABLE IF NOT EXISTS candidates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        full_name TEXT NOT NULL UNIQUE,
        type_hint TEXT,
        source TEXT,
        owner_login TEXT,
        repo_name TEXT,
        description TEXT,
        language TEXT,
        stars INTEGER NOT NULL DEFAULT 0,
        forks INTEGER NOT NULL DEFAULT 0,
        open_issues INTEGER NOT NULL DEFAULT 0,
        license TEXT,
        default_branch TEXT,
        topics TEXT,  -- JSON array
        github_url TEXT,
        owner_avatar_url TEXT,
        owner_html_url TEXT,
        github_created_at TEXT,  -- ISO 8601
        github_updated_at TEXT,  -- ISO 8601
        readme_raw TEXT,
        enrichment_status TEXT NOT NULL DEFAULT 'pending',
        enrich_attempts INTEGER NOT NULL DEFAULT 0,
        enrichment_error TEXT,
        enriched_at TEXT,
        artifact_id INTEGER,
        discovered_at TEXT,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_candidates_status ON candidates(enrichment_status);
    CREATE INDEX IF NOT EXISTS idx_candidates_stars ON candidates(stars);
    CREATE INDEX IF NOT EXISTS idx_candidates_source ON candidates(source);

    -- Canonical artifacts
    CREATE TABLE IF NOT EXISTS artifacts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        github_repo_full_name TEXT NOT NULL UNIQUE,
        slug TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        long_description TEXT,
        artifact_type TEXT,
        category TEXT,
        tags TEXT,  -- JSON array
        install_command TEXT,
        npm_package_name TEXT,
        github_url TEXT,
        default_branch TEXT,
        stars INTEGER NOT NULL DEFAULT 0,
        forks INTEGER NOT NULL DEFAULT 0,
        open_issues INTEGER NOT NULL DEFAULT 0,
        language TEXT,
        license TEXT,
        github_created_at TEXT,
        github_updated_at TEXT,
        readme_raw TEXT,
        readme_excerpt TEXT,
        meta_title TEXT,
        meta_description TEXT,
        trending_score INTEGER NOT NULL DEFAULT 0,
        contributor_id INTEGER,
        status TEXT NOT NULL DEFAULT 'active',
        source TEXT,
        last_pipeline_sync TEXT,
        created_at TEXT,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_artifacts_slug ON artifacts(slug);
    CREATE INDEX IF NOT EXISTS idx_artifacts_status ON artifacts(status);
    CREATE INDEX IF NOT EXISTS idx_artifacts_stars ON artifacts(stars);

    CREATE TABLE IF NOT EXISTS artifact_platforms (
        artifact_id INTEGER NOT NULL,
        platform TEXT NOT NULL,
        UNIQUE(artifact_id, platform),
        FOREIGN KEY (artifact_id) REFERENCES artifacts(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS contributors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        github_username TEXT NOT NULL UNIQUE,
        display_name TEXT,
        avatar_url TEXT,
        github_url TEXT,
        created_at TEXT
    );

    CREATE TABLE IF NOT EXISTS scraper_state (
        query_key TEXT PRIMARY KEY,
        last_page INTEGER NOT NULL DEFAULT 0,
        last_bucket_idx INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT
    );

    -- Schema migrations tracking
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        applied_at TEXT NOT NULL,
        description TEXT
    );
    """,
    2: """
    -- Vibe scoring: inputs, components and mentions
    ALTER TABLE artifacts ADD COLUMN vibe_score INTEGER;
    ALTER TABLE artifacts ADD COLUMN vibe_download_signal INTEGER;
    ALTER TABLE artifacts ADD COLUMN vibe_mention_signal INTEGER;
    ALTER TABLE artifacts ADD COLUMN vibe_quality_signal INTEGER;
    ALTER TABLE artifacts ADD COLUMN vibe_sentiment_signal INTEGER;
    ALTER TABLE artifacts ADD COLUMN vibe_recency_signal INTEGER;
    ALTER TABLE artifacts ADD COLUMN npm_downloads_weekly INTEGER;
    ALTER TABLE artifacts ADD COLUMN pypi_downloads_weekly INTEGER;
    ALTER TABLE artifacts ADD COLUMN mention_count_7d INTEGER;
    ALTER TABLE artifacts ADD COLUMN mention_count_30d INTEGER;
    ALTER TABLE artifacts ADD COLUMN mention_avg_score REAL;
    ALTER TABLE artifacts ADD COLUMN sentiment_avg REAL;
    ALTER TABLE artifacts ADD COLUMN vibe_updated_at TEXT;

    CREATE TABLE IF NOT EXISTS artifact_mentions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        artifact_id INTEGER NOT NULL,
        source TEXT NOT NULL,  -- 'hackernews', 'reddit', 'devto'
        external_id TEXT NOT NULL,
        title TEXT,
        url TEXT,
        author TEXT,
        score INTEGER NOT NULL DEFAULT 0,
        comment_count INTEGER NOT NULL DEFAULT 0,
        snippet TEXT,
        sentiment REAL,
        mentioned_at TEXT,
        created_at TEXT,
        UNIQUE(source, external_id)
    );

    CREATE INDEX IF NOT EXISTS idx_mentions_artifact_id ON artifact_mentions(artifact_id);
    """,
}

# Columns stored as JSON text and decoded on read
JSON_COLUMNS: Dict[str, Set[str]] = {
    "candidates": {"topics"},
    "artifacts": {"tags"},
}

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# Driver exceptions translated into StoreError
_DRIVER_ERRORS = (aiosqlite.Error,)


def _ident(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise StoreError(f"Invalid identifier: {name!r}")
    return name


def _encode(value: Any) -> Any:
    if isinstance(value, (list, dict, tuple)):
        return json.dumps(list(value) if isinstance(value, tuple) else value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _where(filters: Sequence[Filter]) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    for f in filters:
        col = _ident(f.column)
        if f.op == "eq":
            clauses.append(f"{col} = ?")
            params.append(_encode(f.value))
        elif f.op == "lt":
            clauses.append(f"{col} < ?")
            params.append(_encode(f.value))
        elif f.op == "gt":
            clauses.append(f"{col} > ?")
            params.append(_encode(f.value))
        elif f.op == "is_null":
            clauses.append(f"{col} IS NULL")
        elif f.op == "in":
            values = list(f.value or ())
            if not values:
                clauses.append("0")
            else:
                clauses.append(f"{col} IN ({', '.join('?' for _ in values)})")
                params.extend(_encode(v) for v in values)
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


class SQLiteStore(KeyedStore):
    """
    Async SQLite keyed store.

    Features:
    - Automatic schema migrations
    - Merge-on-conflict upserts that only touch provided columns
    - Batch writes are atomic (a failing row rolls the batch back)
    - JSON serialization for list columns
    """

    def __init__(self, db_path: str | Path = "radar.db"):
        self.db_path = str(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Initialize database connection and apply migrations.
        Should be called once at startup.
        """
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._apply_migrations()

        logger.info(f"SQLiteStore initialized: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Context manager for transactions.

        Commits on success, rolls back on exception.
        """
        if not self._db:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        async with self._lock:
            try:
                await self._db.execute("BEGIN")
                yield self._db
                await self._db.commit()
            except Exception:
                await self._db.rollback()
                raise

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    async def _apply_migrations(self) -> None:
        """Apply pending schema migrations."""
        if not self._db:
            raise RuntimeError("Database not initialized")

        try:
            cursor = await self._db.execute("SELECT MAX(version) FROM schema_migrations")
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0
        except aiosqlite.OperationalError:
            # Table doesn't exist yet
            current_version = 0

        for version in sorted(MIGRATIONS.keys()):
            if version <= current_version:
                continue

            logger.info(f"Applying migration v{version}...")

            # executescript() commits on its own, so it runs outside transaction()
            await self._db.executescript(MIGRATIONS[version])
            await self._db.execute(
                """
                INSERT INTO schema_migrations (version, applied_at, description)
                VALUES (?, ?, ?)
                """,
                (version, datetime.now(timezone.utc).isoformat(), f"Schema version {version}"),
            )
            await self._db.commit()

            logger.info(f"Migration v{version} applied successfully")

    async def schema_version(self) -> int:
        if not self._db:
            raise RuntimeError("Database not initialized")
        cursor = await self._db.execute("SELECT MAX(version) FROM schema_migrations")
        row = await cursor.fetchone()
        return row[0] if row and row[0] else 0

    # =========================================================================
    # KEYED STORE
    # =========================================================================

    def _decode(self, table: str, row: aiosqlite.Row) -> Row:
        data = dict(row)
        for col in JSON_COLUMNS.get(table, ()):
            raw = data.get(col)
            if isinstance(raw, str):
                try:
                    data[col] = json.loads(raw)
                except ValueError:
                    data[col] = []
        return data

    async def upsert(self, table: str, rows: List[Row], on_conflict: str) -> List[Row]:
        if not rows:
            return []

        table = _ident(table)
        keys = [_ident(k.strip()) for k in on_conflict.split(",")]
        results: List[Row] = []

        try:
            async with self.transaction() as conn:
                for row in rows:
                    missing = [k for k in keys if row.get(k) is None]
                    if missing:
                        raise StoreError(f"{table}: conflict column(s) {missing} missing")

                    cols = [_ident(c) for c in row.keys()]
                    placeholders = ", ".join("?" for _ in cols)
                    updates = [c for c in cols if c not in keys]
                    if updates:
                        action = "DO UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in updates)
                    else:
                        action = "DO NOTHING"

                    await conn.execute(
                        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders}) "
                        f"ON CONFLICT({', '.join(keys)}) {action}",
                        [_encode(row[c]) for c in cols],
                    )

                    where, params = _where([Filter.eq(k, row[k]) for k in keys])
                    cursor = await conn.execute(f"SELECT * FROM {table}{where}", params)
                    stored = await cursor.fetchone()
                    if stored is not None:
                        results.append(self._decode(table, stored))
        except _DRIVER_ERRORS as e:
            raise StoreError(f"upsert into {table} failed: {e}") from e

        return results

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: Optional[Sequence[str]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Row]:
        if not self._db:
            raise RuntimeError("Database not initialized")

        table = _ident(table)
        cols = ", ".join(_ident(c) for c in columns) if columns else "*"
        where, params = _where(filters)
        query = f"SELECT {cols} FROM {table}{where}"

        if order:
            query += f" ORDER BY {_ident(order.column)} {'DESC' if order.descending else 'ASC'}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(offset)

        try:
            cursor = await self._db.execute(query, params)
            rows = await cursor.fetchall()
        except _DRIVER_ERRORS as e:
            raise StoreError(f"select from {table} failed: {e}") from e

        return [self._decode(table, r) for r in rows]

    async def update(self, table: str, filters: Sequence[Filter], values: Row) -> List[Row]:
        if not values:
            return []

        table = _ident(table)
        cols = [_ident(c) for c in values.keys()]
        where, params = _where(filters)

        try:
            async with self.transaction() as conn:
                cursor = await conn.execute(f"SELECT rowid FROM {table}{where}", params)
                rowids = [r[0] for r in await cursor.fetchall()]
                if not rowids:
                    return []

                marks = ", ".join("?" for _ in rowids)
                await conn.execute(
                    f"UPDATE {table} SET {', '.join(f'{c} = ?' for c in cols)} "
                    f"WHERE rowid IN ({marks})",
                    [_encode(values[c]) for c in cols] + rowids,
                )
                cursor = await conn.execute(
                    f"SELECT * FROM {table} WHERE rowid IN ({marks})", rowids
                )
                updated = await cursor.fetchall()
        except _DRIVER_ERRORS as e:
            raise StoreError(f"update of {table} failed: {e}") from e

        return [self._decode(table, r) for r in updated]
