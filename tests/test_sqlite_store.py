"""Tests for the SQLite keyed store."""

import pytest

from storage.keyed_store import Filter, Order
from storage.sqlite_store import CURRENT_SCHEMA_VERSION, SQLiteStore
from utils.errors import StoreError


class TestMigrations:

    @pytest.mark.asyncio
    async def test_applies_all_migrations(self, sqlite_store):
        assert await sqlite_store.schema_version() == CURRENT_SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_reopen_is_idempotent(self, tmp_path):
        path = tmp_path / "radar.db"
        async with SQLiteStore(path) as store:
            await store.upsert("contributors", [{"github_username": "acme"}], "github_username")

        async with SQLiteStore(path) as store:
            assert await store.schema_version() == CURRENT_SCHEMA_VERSION
            rows = await store.select("contributors")
            assert [r["github_username"] for r in rows] == ["acme"]


class TestUpsert:

    @pytest.mark.asyncio
    async def test_returns_rows_with_ids(self, sqlite_store):
        rows = await sqlite_store.upsert(
            "candidates",
            [{"full_name": "acme/a", "stars": 1}, {"full_name": "acme/b", "stars": 2}],
            "full_name",
        )
        assert [r["full_name"] for r in rows] == ["acme/a", "acme/b"]
        assert all(isinstance(r["id"], int) for r in rows)

    @pytest.mark.asyncio
    async def test_merge_touches_only_provided_columns(self, sqlite_store):
        await sqlite_store.upsert(
            "candidates",
            [{"full_name": "acme/a", "stars": 1, "description": "first", "enrichment_status": "enriched"}],
            "full_name",
        )
        await sqlite_store.upsert("candidates", [{"full_name": "acme/a", "stars": 50}], "full_name")

        [row] = await sqlite_store.select("candidates", [Filter.eq("full_name", "acme/a")])
        assert row["stars"] == 50
        assert row["description"] == "first"
        assert row["enrichment_status"] == "enriched"

    @pytest.mark.asyncio
    async def test_json_columns_round_trip(self, sqlite_store):
        await sqlite_store.upsert("candidates", [{"full_name": "acme/a", "topics": ["mcp", "ai"]}], "full_name")
        [row] = await sqlite_store.select("candidates")
        assert row["topics"] == ["mcp", "ai"]

    @pytest.mark.asyncio
    async def test_composite_conflict_key(self, sqlite_store):
        [artifact] = await sqlite_store.upsert(
            "artifacts",
            [{"github_repo_full_name": "acme/a", "slug": "acme-a", "name": "a"}],
            "github_repo_full_name",
        )
        row = {"artifact_id": artifact["id"], "platform": "Cursor"}
        await sqlite_store.upsert("artifact_platforms", [row], "artifact_id,platform")
        await sqlite_store.upsert("artifact_platforms", [row], "artifact_id,platform")
        assert len(await sqlite_store.select("artifact_platforms")) == 1

    @pytest.mark.asyncio
    async def test_missing_conflict_column_rolls_back_batch(self, sqlite_store):
        with pytest.raises(StoreError):
            await sqlite_store.upsert(
                "candidates", [{"full_name": "acme/ok"}, {"stars": 3}], "full_name"
            )
        assert await sqlite_store.select("candidates") == []

    @pytest.mark.asyncio
    async def test_constraint_violation_is_store_error(self, sqlite_store):
        # slug and name are NOT NULL
        with pytest.raises(StoreError):
            await sqlite_store.upsert(
                "artifacts", [{"github_repo_full_name": "acme/a"}], "github_repo_full_name"
            )

    @pytest.mark.asyncio
    async def test_rejects_unsafe_identifiers(self, sqlite_store):
        with pytest.raises(StoreError):
            await sqlite_store.upsert("candidates; drop table x", [{"full_name": "a/b"}], "full_name")


class TestSelectAndUpdate:

    @pytest.mark.asyncio
    async def test_filters_order_limit(self, sqlite_store):
        await sqlite_store.upsert(
            "candidates",
            [
                {"full_name": "acme/a", "stars": 5, "enrichment_status": "pending"},
                {"full_name": "acme/b", "stars": 50, "enrichment_status": "failed"},
                {"full_name": "acme/c", "stars": 500, "enrichment_status": "enriched"},
            ],
            "full_name",
        )
        rows = await sqlite_store.select(
            "candidates",
            [Filter.in_("enrichment_status", ["pending", "failed"]), Filter.gt("stars", 1)],
            columns=["full_name"],
            order=Order("stars", descending=True),
            limit=1,
        )
        assert rows == [{"full_name": "acme/b"}]

    @pytest.mark.asyncio
    async def test_offset_paging(self, sqlite_store):
        await sqlite_store.upsert(
            "candidates", [{"full_name": f"acme/{i}", "stars": i} for i in range(5)], "full_name"
        )
        page = await sqlite_store.select("candidates", order=Order("stars"), limit=2, offset=2)
        assert [r["stars"] for r in page] == [2, 3]

    @pytest.mark.asyncio
    async def test_empty_in_matches_nothing(self, sqlite_store):
        await sqlite_store.upsert("candidates", [{"full_name": "acme/a"}], "full_name")
        assert await sqlite_store.select("candidates", [Filter.in_("full_name", [])]) == []

    @pytest.mark.asyncio
    async def test_update_returns_affected_rows(self, sqlite_store):
        await sqlite_store.upsert(
            "candidates", [{"full_name": "acme/a"}, {"full_name": "acme/b"}], "full_name"
        )
        updated = await sqlite_store.update(
            "candidates", [Filter.eq("full_name", "acme/b")], {"enrichment_status": "skipped"}
        )
        assert [r["full_name"] for r in updated] == ["acme/b"]
        assert updated[0]["enrichment_status"] == "skipped"

        untouched = await sqlite_store.select("candidates", [Filter.eq("full_name", "acme/a")])
        assert untouched[0]["enrichment_status"] == "pending"

    @pytest.mark.asyncio
    async def test_is_null_filter(self, sqlite_store):
        await sqlite_store.upsert(
            "artifact_mentions",
            [
                {"artifact_id": 1, "source": "reddit", "external_id": "x", "sentiment": 0.5},
                {"artifact_id": 1, "source": "reddit", "external_id": "y"},
            ],
            "source,external_id",
        )
        rows = await sqlite_store.select("artifact_mentions", [Filter.is_null("sentiment")])
        assert [r["external_id"] for r in rows] == ["y"]

    def test_unknown_filter_op(self):
        with pytest.raises(ValueError):
            Filter("stars", "like", "%x%")
