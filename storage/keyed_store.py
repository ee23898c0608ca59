"""
Keyed Store interface for Artifact Radar.

The canonical store is an opaque keyed table store reachable through three
idempotent operations:

    upsert(table, rows, on_conflict)   -> affected rows (with ids)
    select(table, filters, ...)        -> rows
    update(table, filters, values)     -> affected rows

Two implementations:
- SupabaseStore (storage/supabase_store.py): PostgREST over httpx
- SQLiteStore   (storage/sqlite_store.py):   aiosqlite, local runs and tests

Upsert semantics are merge-on-conflict: only the columns present in the rows
are written, so callers control which fields a re-upsert may touch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

Row = Dict[str, Any]

FILTER_OPS = ("eq", "in", "lt", "gt", "is_null")


@dataclass(frozen=True)
class Filter:
    """Single-column predicate: Filter("stars", "gt", 100)."""
    column: str
    op: str
    value: Any = None

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op: {self.op}")

    @classmethod
    def eq(cls, column: str, value: Any) -> "Filter":
        return cls(column, "eq", value)

    @classmethod
    def in_(cls, column: str, values: Sequence[Any]) -> "Filter":
        return cls(column, "in", tuple(values))

    @classmethod
    def lt(cls, column: str, value: Any) -> "Filter":
        return cls(column, "lt", value)

    @classmethod
    def gt(cls, column: str, value: Any) -> "Filter":
        return cls(column, "gt", value)

    @classmethod
    def is_null(cls, column: str) -> "Filter":
        return cls(column, "is_null")


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


class KeyedStore(ABC):
    """Async keyed table store."""

    async def initialize(self) -> None:
        """Open connections / apply migrations. Default: nothing to do."""

    async def close(self) -> None:
        """Release resources. Default: nothing to do."""

    async def __aenter__(self) -> "KeyedStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def upsert(self, table: str, rows: List[Row], on_conflict: str) -> List[Row]:
        """Insert-or-update rows keyed on `on_conflict` (comma-separated columns)."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: Optional[Sequence[str]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Row]:
        """Read rows matching every filter."""

    @abstractmethod
    async def update(self, table: str, filters: Sequence[Filter], values: Row) -> List[Row]:
        """Partial update of rows matching every filter."""
