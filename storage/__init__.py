"""
Storage layer for Artifact Radar.

A KeyedStore (Supabase REST or local SQLite) underneath two facades:
- StagingStore: discovery candidates and their enrichment lifecycle
- ArtifactStore: published artifacts, platform links, mentions, contributors

Quick start:
    from storage import SQLiteStore, StagingStore

    async with SQLiteStore("radar.db") as store:
        staging = StagingStore(store)
        await staging.upsert(candidates)
        pending = await staging.list_pending(limit=50)
"""

from storage.artifact_store import ArtifactRecord, ArtifactStore, ContributorCache
from storage.keyed_store import Filter, KeyedStore, Order
from storage.sqlite_store import CURRENT_SCHEMA_VERSION, SQLiteStore
from storage.staging_store import Candidate, CandidateStatus, StagingStore
from storage.supabase_store import SupabaseStore

__all__ = [
    "ArtifactRecord",
    "ArtifactStore",
    "Candidate",
    "CandidateStatus",
    "ContributorCache",
    "CURRENT_SCHEMA_VERSION",
    "Filter",
    "KeyedStore",
    "Order",
    "SQLiteStore",
    "StagingStore",
    "SupabaseStore",
]

__version__ = "1.0.0"
