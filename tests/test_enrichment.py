"""Tests for Gemini classification, taxonomy coercion, artifact building and sentiment."""

import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors

from enrichment.classifier import EnrichedFields, EnrichmentEngine, build_artifact, build_prompt
from enrichment.gemini_client import GeminiClient, GeminiConfig
from enrichment.sentiment import SentimentAnalyzer, SentimentItem, build_sentiment_prompt
from enrichment.taxonomy import PLATFORM_DEFAULTS, category_slug, validate_enrichment
from utils.errors import ConfigurationError, QuotaExceededError


class Sleeps:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


def item(artifact_type="mcp-server", category="Database", **extra):
    return {
        "artifact_type": artifact_type,
        "long_description": "Talks to Postgres.",
        "category": category,
        "tags": ["postgres", "sql"],
        "compatible_platforms": ["Cursor", "Claude Code"],
        "install_command": "npx -y pg-mcp",
        **extra,
    }


def is_batch(prompt):
    return "classifying 1 " not in prompt


@pytest.fixture
def sleeps():
    return Sleeps()


@pytest.fixture
def engine_for(sleeps):
    def _make(client, **kwargs):
        return EnrichmentEngine(client, retry_pause=0, sleep=sleeps, **kwargs)
    return _make


class TestPrompt:

    def test_lists_each_repo_in_order(self, make_candidate):
        prompt = build_prompt([make_candidate("acme/a"), make_candidate("acme/b", readme_raw="# B")])
        assert "classifying 2 GitHub repositories" in prompt
        assert prompt.index("REPO_0") < prompt.index("acme/a") < prompt.index("REPO_1") < prompt.index("acme/b")
        assert "No README." in prompt
        assert "# B" in prompt


class TestClassifyBatch:

    @pytest.mark.asyncio
    async def test_single_call_for_whole_batch(self, scripted_gemini, engine_for, make_candidate):
        client = scripted_gemini(lambda prompt, kw: json.dumps([item(), item("skill", "Testing")]))
        engine = engine_for(client)

        results = await engine.classify_batch([make_candidate("acme/a"), make_candidate("acme/b")])

        assert [r.artifact_type for r in results] == ["mcp-server", "skill"]
        assert results[1].category == "Testing"
        assert engine.batch_calls == 1
        assert engine.fallbacks == 0
        assert client.calls[0]["json_mode"] is True
        assert client.calls[0]["max_output_tokens"] == 1000

    @pytest.mark.asyncio
    async def test_short_array_marks_missing_items(self, scripted_gemini, engine_for, make_candidate):
        client = scripted_gemini(lambda prompt, kw: json.dumps([item()]))
        results = await engine_for(client).classify_batch([make_candidate("acme/a"), make_candidate("acme/b")])

        assert results[0] is not None
        assert results[1] is None

    @pytest.mark.asyncio
    async def test_garbage_batch_falls_back_one_by_one(self, scripted_gemini, engine_for, make_candidate):
        def responder(prompt, kw):
            if is_batch(prompt):
                return "Sorry, I cannot help with that."
            return "```json\n" + json.dumps([item("workflow")]) + "\n```"

        client = scripted_gemini(responder)
        engine = engine_for(client)

        results = await engine.classify_batch([make_candidate("acme/a"), make_candidate("acme/b")])

        assert [r.artifact_type for r in results] == ["workflow", "workflow"]
        assert engine.batch_calls == 3
        assert engine.fallbacks == 1
        assert engine.single_calls == 2

    @pytest.mark.asyncio
    async def test_one_candidate_skips_batch_path(self, scripted_gemini, engine_for, make_candidate):
        client = scripted_gemini(lambda prompt, kw: json.dumps(item()))
        engine = engine_for(client)

        [result] = await engine.classify_batch([make_candidate("acme/a")])

        assert result.install_command == "npx -y pg-mcp"
        assert engine.batch_calls == 0
        assert "response_schema" in client.calls[0]

    @pytest.mark.asyncio
    async def test_empty_input(self, scripted_gemini, engine_for):
        client = scripted_gemini(lambda prompt, kw: "[]")
        assert await engine_for(client).classify_batch([]) == []
        assert client.calls == []


class TestClassifySingle:

    @pytest.mark.asyncio
    async def test_last_attempt_drops_json_mode(self, scripted_gemini, engine_for, sleeps, make_candidate):
        def responder(prompt, kw):
            if kw.get("json_mode"):
                return "{broken"
            return 'Here you go: {"artifact_type": "skill", "category": "Research", "tags": []}'

        client = scripted_gemini(responder)
        engine = engine_for(client)

        result = await engine.classify(make_candidate("acme/a"))

        assert result.artifact_type == "skill"
        assert result.category == "Research"
        assert [c["json_mode"] for c in client.calls] == [True, True, True, False]
        assert client.calls[-1]["temperature"] == 0.05
        assert sleeps.waits == [0, 0, 0]

    @pytest.mark.asyncio
    async def test_every_attempt_failing_returns_none(self, scripted_gemini, engine_for, make_candidate):
        client = scripted_gemini(lambda prompt, kw: "")
        engine = engine_for(client, single_retries=1)

        assert await engine.classify(make_candidate("acme/a")) is None
        assert engine.single_calls == 2

    @pytest.mark.asyncio
    async def test_quota_error_retried_without_spending_attempt(self, scripted_gemini, engine_for, sleeps, make_candidate):
        state = {"calls": 0}

        def responder(prompt, kw):
            state["calls"] += 1
            if state["calls"] == 1:
                raise QuotaExceededError("429 RESOURCE_EXHAUSTED")
            return json.dumps([item()])

        engine = engine_for(scripted_gemini(responder))

        result = await engine.classify(make_candidate("acme/a"))

        assert result is not None
        assert engine.single_calls == 1
        assert sleeps.waits == [10.0]

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self, scripted_gemini, engine_for, make_candidate):
        def responder(prompt, kw):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await engine_for(scripted_gemini(responder)).classify(make_candidate("acme/a"))


class TestTaxonomy:

    def test_unknown_type_falls_back_to_hint(self):
        fields = validate_enrichment(item("browser-extension"), "cursor-rules")
        assert fields["artifact_type"] == "cursor-rules"

    def test_unknown_category_becomes_ai_ml(self):
        fields = validate_enrichment(item(category="Cooking"), "skill")
        assert fields["category"] == "AI / ML"
        assert category_slug(fields["category"]) == "ai-ml"

    def test_platforms_filtered_and_tags_capped(self):
        fields = validate_enrichment(
            item(compatible_platforms=["Cursor", "Emacs", "n8n"], tags=[f"t{i}" for i in range(10)] + [""]),
            "skill",
        )
        assert fields["compatible_platforms"] == ["Cursor", "n8n"]
        assert fields["tags"] == [f"t{i}" for i in range(7)]

    def test_non_object_is_rejected(self):
        assert validate_enrichment(["skill"], "skill") is None
        assert validate_enrichment(None, "skill") is None
        assert EnrichedFields.from_parsed("skill", "skill") is None

    def test_blank_strings_become_none(self):
        fields = EnrichedFields.from_parsed(item(install_command="  ", meta_title=""), "skill")
        assert fields.install_command is None
        assert fields.meta_title is None


class TestBuildArtifact:

    NOW = datetime(2026, 10, 10, tzinfo=timezone.utc)

    def test_github_candidate(self, make_candidate):
        candidate = make_candidate("acme/tool", readme_raw="# Tool\n" + "x" * 600)
        fields = EnrichedFields(artifact_type="mcp-server", category="Database", tags=["pg"])

        artifact = build_artifact(candidate, fields, contributor_id=7, now=self.NOW)

        assert artifact.slug == "acme-tool"
        assert artifact.name == "tool"
        assert artifact.category == "database"
        assert artifact.github_url == "https://github.com/acme/tool"
        assert artifact.trending_score == 35
        assert artifact.meta_title == "tool | Artifact Radar"
        assert artifact.meta_description == "tool description"
        assert artifact.install_command == "npx skills add acme/tool"
        assert artifact.platforms == PLATFORM_DEFAULTS["mcp-server"]
        assert len(artifact.readme_excerpt) == 500
        assert artifact.contributor_id == 7
        assert artifact.last_pipeline_sync == self.NOW.isoformat()

    def test_model_output_wins_over_defaults(self, make_candidate):
        fields = EnrichedFields.from_parsed(item(meta_title="PG MCP", npm_package_name="pg-mcp"), "skill")
        artifact = build_artifact(make_candidate("acme/tool"), fields, now=self.NOW)

        assert artifact.meta_title == "PG MCP"
        assert artifact.npm_package_name == "pg-mcp"
        assert artifact.platforms == ["Cursor", "Claude Code"]
        assert artifact.long_description == "Talks to Postgres."

    def test_registry_candidate_has_no_github_url(self, make_candidate):
        candidate = make_candidate("npm:left-pad", owner_login=None, repo_name="left-pad")
        fields = EnrichedFields(artifact_type="skill", category="AI / ML")

        artifact = build_artifact(candidate, fields, now=self.NOW)

        assert artifact.github_url is None
        assert artifact.slug == "npm-left-pad"
        assert artifact.name == "left-pad"


class TestSentiment:

    def _items(self, n):
        return [SentimentItem(name=f"tool{i}", mentions=[{"source": "hackernews", "title": "Great", "score": 5}])
                for i in range(n)]

    def test_prompt_caps_mentions_per_tool(self):
        mentions = [{"source": "reddit", "title": f"post {i}"} for i in range(5)]
        prompt = build_sentiment_prompt([SentimentItem(name="tool", mentions=mentions)])
        assert "post 2" in prompt
        assert "post 3" not in prompt

    @pytest.mark.asyncio
    async def test_scores_are_clamped_and_padded(self, scripted_gemini):
        analyzer = SentimentAnalyzer(scripted_gemini(lambda prompt, kw: "[0.5, 3, \"bad\"]"), sleep=Sleeps())
        assert await analyzer.score_batch(self._items(4)) == [0.5, 1.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_failed_batch_is_neutral(self, scripted_gemini):
        analyzer = SentimentAnalyzer(scripted_gemini(lambda prompt, kw: "no idea"), sleep=Sleeps())
        assert await analyzer.score_batch(self._items(3)) == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_batches_with_pause(self, scripted_gemini):
        sleeps = Sleeps()
        client = scripted_gemini(lambda prompt, kw: "[0.1, 0.2]")
        analyzer = SentimentAnalyzer(client, batch_size=2, pause=0.5, sleep=sleeps)

        scores = await analyzer.score(self._items(3))

        assert scores == [0.1, 0.2, 0.1]
        assert len(client.calls) == 2
        assert sleeps.waits == [0.5]


class FakeModels:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text, candidates=[])


def fake_genai(models):
    return SimpleNamespace(aio=SimpleNamespace(models=models))


class TestGeminiClient:

    @pytest.mark.asyncio
    async def test_json_mode_and_schema(self):
        models = FakeModels(text='  [{"a": 1}]\n')
        client = GeminiClient(GeminiConfig(api_key="k"))
        client._client = fake_genai(models)

        text = await client.generate("prompt", max_output_tokens=800, response_schema={"type": "ARRAY"})

        assert text == '[{"a": 1}]'
        config = models.calls[0]["config"]
        assert models.calls[0]["model"] == "gemini-2.5-flash"
        assert config.response_mime_type == "application/json"
        assert config.max_output_tokens == 800
        assert config.temperature == 0.1
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_free_text_mode(self):
        models = FakeModels(text=None)
        client = GeminiClient(GeminiConfig(api_key="k"))
        client._client = fake_genai(models)

        assert await client.generate("p", max_output_tokens=10, json_mode=False, temperature=0.05) == ""
        config = models.calls[0]["config"]
        assert config.response_mime_type is None
        assert config.temperature == 0.05

    @pytest.mark.asyncio
    async def test_429_becomes_quota_error(self):
        error = genai_errors.ClientError(
            429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}}
        )
        client = GeminiClient(GeminiConfig(api_key="k"))
        client._client = fake_genai(FakeModels(error=error))

        with pytest.raises(QuotaExceededError):
            await client.generate("p", max_output_tokens=10)

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            GeminiClient().client
