"""
EnrichmentEngine: LLM classification of staged candidates.

Turns a Candidate into EnrichedFields (type, category, tags, platforms,
install command, SEO copy) using Gemini.

Call strategy:
- classify_batch(): one free-form JSON call for up to GEMINI_BATCH repos,
  parsed with the repair cascade, 2 retries. If the batch still fails,
  every item is classified on its own.
- classify(): schema-constrained JSON, 3 retries; the final attempt drops
  JSON mode entirely and relies on the repair cascade.

Quota errors (429) are retried inside each call with with_retry; they never
count against the parse-retry budget.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from google.genai import errors as genai_errors

from collectors.retry_strategy import RetryConfig, with_retry
from enrichment.json_repair import repair_json, repair_json_array
from enrichment.taxonomy import (
    ARTIFACT_TYPES,
    CATEGORY_LABELS,
    PLATFORM_DEFAULTS,
    PLATFORMS,
    category_slug,
    validate_enrichment,
)
from scoring.trending import compute_trending_score
from storage.artifact_store import ArtifactRecord
from storage.staging_store import README_MAX_CHARS, Candidate
from utils.canonical_keys import github_url_for, slugify_identifier
from utils.errors import JSONRepairError, QuotaExceededError

logger = logging.getLogger(__name__)

GEMINI_BATCH = 5
README_EXCERPT_CHARS = 1800
TOKENS_PER_ITEM = 500
SINGLE_MAX_TOKENS = 800

# Failures that cost one attempt; anything else is a bug and propagates
RECOVERABLE_ERRORS = (
    JSONRepairError,
    QuotaExceededError,
    genai_errors.APIError,
    httpx.HTTPError,
    asyncio.TimeoutError,
)

# Gemini 429 backoff: 10s, 20s, 40s
GEMINI_RETRY = RetryConfig(
    max_retries=3,
    backoff_base=2.0,
    backoff_multiplier=10.0,
    backoff_max=60.0,
    jitter=False,
)

_ITEM_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "artifact_type": {"type": "STRING", "enum": list(ARTIFACT_TYPES)},
        "long_description": {"type": "STRING"},
        "category": {"type": "STRING", "enum": list(CATEGORY_LABELS)},
        "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
        "compatible_platforms": {"type": "ARRAY", "items": {"type": "STRING"}},
        "install_command": {"type": "STRING"},
        "npm_package_name": {"type": "STRING", "nullable": True},
        "meta_title": {"type": "STRING"},
        "meta_description": {"type": "STRING"},
    },
    "required": ["artifact_type", "long_description", "category", "tags", "install_command"],
}

ENRICHMENT_SCHEMA: Dict[str, Any] = {"type": "ARRAY", "items": _ITEM_SCHEMA}


@dataclass
class EnrichedFields:
    """Validated model output for one candidate."""
    artifact_type: str
    category: str
    long_description: str = ""
    tags: List[str] = field(default_factory=list)
    compatible_platforms: List[str] = field(default_factory=list)
    install_command: Optional[str] = None
    npm_package_name: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None

    @classmethod
    def from_parsed(cls, parsed: Any, type_hint: str) -> Optional["EnrichedFields"]:
        fields = validate_enrichment(parsed, type_hint)
        if fields is None:
            return None

        def text(key: str) -> Optional[str]:
            value = fields.get(key)
            return str(value).strip() if value else None

        return cls(
            artifact_type=fields["artifact_type"],
            category=fields["category"],
            long_description=text("long_description") or "",
            tags=fields["tags"],
            compatible_platforms=fields["compatible_platforms"],
            install_command=text("install_command"),
            npm_package_name=text("npm_package_name"),
            meta_title=text("meta_title"),
            meta_description=text("meta_description"),
        )


def build_prompt(candidates: Sequence[Candidate]) -> str:
    """Classification prompt for one or more candidates, answered as a JSON array."""
    summaries = []
    for idx, c in enumerate(candidates):
        excerpt = c.readme_raw[:README_EXCERPT_CHARS] if c.readme_raw else "No README."
        summaries.append(
            f"### REPO_{idx}\n"
            f"- full_name: {c.full_name}\n"
            f"- description: {c.description or '(none)'}\n"
            f"- language: {c.language or 'Unknown'}\n"
            f"- stars: {c.stars or 0} | forks: {c.forks or 0}\n"
            f"- topics: {', '.join(c.topics) if c.topics else '(none)'}\n"
            f"- updated: {c.github_updated_at}\n"
            f"README excerpt:\n{excerpt}"
        )

    n = len(candidates)
    return f"""You are classifying {n} GitHub repositories as "agent artifacts" for Artifact Radar. Return ONLY a valid JSON array of {n} objects, one per repo, same order. No markdown fences, no extra text.

{chr(10).join(summaries)}

## Classification rules
artifact_type must be EXACTLY one of: {', '.join(ARTIFACT_TYPES)}
category must be EXACTLY one of: {', '.join(CATEGORY_LABELS)}
compatible_platforms must be a subset of: {', '.join(PLATFORMS)}
tags: 3-7 lowercase hyphenated keywords (e.g. "web-scraping", "auth", "react")

Heuristics:
- MCP server -> "mcp-server" | Cursor rules -> "cursor-rules" | Skill (SKILL.md) -> "skill"
- n8n community node -> "n8n-node" | Workflow/orchestration -> "workflow"
- LangChain tool -> "langchain-tool" | CrewAI tool -> "crewai-tool"

Install patterns: MCP/npm: "npx -y <pkg>" | Skills: "npx skills add <owner>/<repo>" | pip: "pip install <pkg>" | Cursor: "curl -o .cursorrules <url>" | n8n: "npm install <pkg>"

Each object shape:
{{"artifact_type":"...","long_description":"2-3 sentences.","category":"...","tags":[...],"compatible_platforms":[...],"install_command":"...","npm_package_name":null,"meta_title":"under 60 chars","meta_description":"under 160 chars"}}"""


class EnrichmentEngine:
    """
    Batch-first Gemini classifier with single-item fallback.

    Usage:
        engine = EnrichmentEngine(GeminiClient(GeminiConfig(api_key=key)))
        results = await engine.classify_batch(candidates)   # aligned with input
    """

    def __init__(
        self,
        client: Any,
        batch_retries: int = 2,
        single_retries: int = 3,
        retry_config: Optional[RetryConfig] = None,
        retry_pause: float = 4.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.client = client
        self.batch_retries = batch_retries
        self.single_retries = single_retries
        self.retry_config = retry_config or GEMINI_RETRY
        self.retry_pause = retry_pause
        self._sleep = sleep

        self.batch_calls = 0
        self.single_calls = 0
        self.fallbacks = 0

    async def _generate(self, prompt: str, **kwargs: Any) -> str:
        async def call() -> str:
            return await self.client.generate(prompt, **kwargs)

        return await with_retry(call, self.retry_config, retry_on=(QuotaExceededError,), sleep=self._sleep)

    async def classify_batch(self, candidates: Sequence[Candidate]) -> List[Optional[EnrichedFields]]:
        """
        Classify several candidates with one call.

        Returns a list aligned with `candidates`; None marks an item the
        model could not classify.
        """
        if not candidates:
            return []
        if len(candidates) == 1:
            return [await self.classify(candidates[0])]

        prompt = build_prompt(candidates)
        names = ", ".join(c.full_name for c in candidates)

        for attempt in range(self.batch_retries + 1):
            self.batch_calls += 1
            try:
                raw = await self._generate(
                    prompt,
                    max_output_tokens=len(candidates) * TOKENS_PER_ITEM,
                    json_mode=True,
                )
                parsed = repair_json(raw)
                if not isinstance(parsed, list):
                    raise JSONRepairError(f"Expected array, got {type(parsed).__name__}")

                parsed = parsed[:len(candidates)] + [None] * (len(candidates) - len(parsed))
                results = [EnrichedFields.from_parsed(p, c.type_hint) for p, c in zip(parsed, candidates)]
                logger.info(f"Batch parsed: {sum(r is not None for r in results)}/{len(candidates)} valid")
                return results

            except RECOVERABLE_ERRORS as e:
                if attempt < self.batch_retries:
                    logger.warning(f"Gemini batch retry {attempt + 1}: {str(e)[:120]}")
                    await self._sleep(self.retry_pause)

        logger.warning(
            f"Batch of {len(candidates)} failed after {self.batch_retries + 1} attempts "
            f"[{names[:80]}], falling back to 1-by-1"
        )
        self.fallbacks += 1

        results = []
        for c in candidates:
            result = await self.classify(c)
            if result is not None:
                logger.info(f"{c.full_name} enriched individually")
            results.append(result)
        return results

    async def classify(self, candidate: Candidate) -> Optional[EnrichedFields]:
        """Classify one candidate; None when every attempt failed."""
        prompt = build_prompt([candidate])

        for attempt in range(self.single_retries + 1):
            last_attempt = attempt == self.single_retries
            self.single_calls += 1
            try:
                if last_attempt:
                    raw = await self._generate(
                        prompt, max_output_tokens=SINGLE_MAX_TOKENS, json_mode=False, temperature=0.05
                    )
                else:
                    raw = await self._generate(
                        prompt,
                        max_output_tokens=SINGLE_MAX_TOKENS,
                        json_mode=True,
                        response_schema=ENRICHMENT_SCHEMA,
                    )
                parsed = repair_json_array(raw)
                return EnrichedFields.from_parsed(parsed[0] if parsed else None, candidate.type_hint)

            except RECOVERABLE_ERRORS as e:
                logger.warning(
                    f"[1x1] attempt {attempt + 1}/{self.single_retries + 1} "
                    f"for {candidate.full_name}: {str(e)[:80]}"
                )
                if not last_attempt:
                    await self._sleep(self.retry_pause)

        return None


def build_artifact(
    candidate: Candidate,
    fields: EnrichedFields,
    contributor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ArtifactRecord:
    """Canonical artifact row from a staged candidate and its enrichment."""
    now = now or datetime.now(timezone.utc)
    description = (candidate.description or "")[:500]
    readme = candidate.readme_raw[:README_MAX_CHARS] if candidate.readme_raw else None
    platforms = fields.compatible_platforms or list(PLATFORM_DEFAULTS.get(fields.artifact_type, []))

    return ArtifactRecord(
        github_repo_full_name=candidate.full_name,
        slug=slugify_identifier(candidate.full_name),
        name=candidate.name,
        artifact_type=fields.artifact_type,
        category=category_slug(fields.category),
        description=description,
        long_description=(fields.long_description or description)[:2000],
        tags=fields.tags[:7],
        install_command=fields.install_command or f"npx skills add {candidate.full_name}",
        npm_package_name=fields.npm_package_name,
        github_url=candidate.github_url or (
            github_url_for(candidate.full_name) if ":" not in candidate.full_name else None
        ),
        default_branch=candidate.default_branch or "main",
        stars=candidate.stars or 0,
        forks=candidate.forks or 0,
        open_issues=candidate.open_issues or 0,
        language=candidate.language,
        license=candidate.license,
        github_created_at=candidate.github_created_at,
        github_updated_at=candidate.github_updated_at,
        readme_raw=readme,
        readme_excerpt=readme[:500] if readme else None,
        meta_title=fields.meta_title or f"{candidate.name} | Artifact Radar",
        meta_description=fields.meta_description or description[:160],
        trending_score=compute_trending_score(
            candidate.stars or 0, candidate.forks or 0, candidate.github_updated_at, now=now
        ),
        contributor_id=contributor_id,
        last_pipeline_sync=now.isoformat(),
        platforms=platforms,
    )
