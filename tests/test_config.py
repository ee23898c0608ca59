"""Tests for environment configuration, validation and run statistics."""

import pytest

from storage.sqlite_store import SQLiteStore
from storage.supabase_store import SupabaseStore
from utils.errors import ConfigurationError
from workflows.config import ALL_SOURCES, PipelineConfig, PipelineMode, RunStats, create_store

ENV_VARS = (
    "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "RADAR_DB_PATH", "GITHUB_PAT", "GITHUB_TOKEN",
    "GEMINI_API_KEY", "GOOGLE_API_KEY", "GOOGLE_APPLICATION_CREDENTIALS", "GOOGLE_CREDENTIALS_JSON",
    "REDDIT_CLIENT_ID", "REDDIT_CLIENT_SECRET", "ENRICH_LIMIT", "ENRICH_CONCURRENCY", "GEMINI_BATCH",
    "GEMINI_MODEL", "MAX_ENRICH_ATTEMPTS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:

    def test_defaults(self, clean_env):
        config = PipelineConfig.from_env()
        assert config.db_path == "radar.db"
        assert config.enrich_limit == 200
        assert config.enrich_concurrency == 5
        assert config.gemini_batch == 5
        assert config.max_enrich_attempts == 3
        assert config.sources == list(ALL_SOURCES)
        assert not config.uses_supabase
        assert not config.google_credentials

    def test_reads_environment(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://proj.supabase.co")
        clean_env.setenv("SUPABASE_SERVICE_ROLE_KEY", "key")
        clean_env.setenv("GITHUB_TOKEN", "gh")
        clean_env.setenv("GOOGLE_API_KEY", "gem")
        clean_env.setenv("GOOGLE_CREDENTIALS_JSON", "{}")
        clean_env.setenv("ENRICH_LIMIT", "50")

        config = PipelineConfig.from_env()

        assert config.uses_supabase
        assert config.github_token == "gh"
        assert config.gemini_api_key == "gem"
        assert config.google_credentials
        assert config.enrich_limit == 50

    def test_github_pat_preferred(self, clean_env):
        clean_env.setenv("GITHUB_PAT", "pat")
        clean_env.setenv("GITHUB_TOKEN", "token")
        assert PipelineConfig.from_env().github_token == "pat"

    def test_bad_integer(self, clean_env):
        clean_env.setenv("ENRICH_CONCURRENCY", "many")
        with pytest.raises(ConfigurationError, match="ENRICH_CONCURRENCY"):
            PipelineConfig.from_env()


class TestValidate:

    def test_discover_needs_no_gemini_key(self):
        PipelineConfig().validate(PipelineMode.DISCOVER)
        PipelineConfig().validate("vibe-score")

    @pytest.mark.parametrize("mode", ["enrich", "bulk", "incremental"])
    def test_gemini_key_required(self, mode):
        with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
            PipelineConfig().validate(mode)

    def test_supabase_settings_come_in_pairs(self):
        with pytest.raises(ConfigurationError, match="together"):
            PipelineConfig(supabase_url="https://proj.supabase.co").validate(PipelineMode.DISCOVER)

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError, match="gitlab"):
            PipelineConfig(sources=["github", "gitlab"]).validate(PipelineMode.DISCOVER)

    def test_non_positive_settings(self):
        with pytest.raises(ConfigurationError, match="enrich_limit"):
            PipelineConfig(gemini_api_key="k", enrich_limit=0).validate(PipelineMode.ENRICH)
        with pytest.raises(ConfigurationError, match="time-budget"):
            PipelineConfig(time_budget_minutes=0).validate(PipelineMode.DISCOVER)


class TestCreateStore:

    def test_sqlite_by_default(self, tmp_path):
        store = create_store(PipelineConfig(db_path=str(tmp_path / "radar.db")))
        assert isinstance(store, SQLiteStore)

    def test_supabase_when_configured(self):
        store = create_store(PipelineConfig(supabase_url="https://proj.supabase.co", supabase_key="k"))
        assert isinstance(store, SupabaseStore)
        assert store.base_url == "https://proj.supabase.co/rest/v1"


class TestRunStats:

    def test_merge_adds_counts(self):
        total = RunStats(mode="bulk", enriched=2, errors=["a"])
        total.merge(RunStats(mode="discover", discovered=5, saved=4, budget_expired=True,
                             sources={"npm": {"queries_run": 1}}, errors=["b"]))

        assert (total.discovered, total.saved, total.enriched) == (5, 4, 2)
        assert total.budget_expired
        assert total.sources == {"npm": {"queries_run": 1}}
        assert total.errors == ["a", "b"]

    def test_to_dict(self):
        stats = RunStats(mode="vibe-score", updated=3, mentions=7)
        assert stats.duration_seconds is None
        stats.complete()

        data = stats.to_dict()

        assert data["mode"] == "vibe-score"
        assert data["vibe"] == {"updated": 3, "mentions": 7}
        assert data["timing"]["duration_seconds"] >= 0
