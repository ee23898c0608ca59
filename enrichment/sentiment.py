"""
Mention sentiment via Gemini.

Only artifacts that actually have mentions are scored, SENTIMENT_BATCH per
call. A failed batch scores every item 0.0 (neutral) rather than failing
the vibe run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

from collectors.retry_strategy import with_retry
from enrichment.classifier import GEMINI_RETRY, RECOVERABLE_ERRORS
from enrichment.json_repair import repair_json_array
from utils.errors import QuotaExceededError

logger = logging.getLogger(__name__)

SENTIMENT_BATCH = 30
MENTIONS_PER_ITEM = 3


@dataclass
class SentimentItem:
    name: str
    mentions: List[Dict[str, Any]] = field(default_factory=list)


def build_sentiment_prompt(items: Sequence[SentimentItem]) -> str:
    n = len(items)
    blocks = []
    for idx, item in enumerate(items):
        lines = "\n  ".join(
            f'[{m.get("source")}] "{m.get("title") or ""}" '
            f'(score:{m.get("score") or 0}, comments:{m.get("comment_count") or 0})'
            for m in item.mentions[:MENTIONS_PER_ITEM]
        )
        blocks.append(f"### TOOL_{idx}: {item.name}\n  {lines}")

    return (
        f"Analyze the sentiment of social media mentions for {n} developer tools. "
        f"Return ONLY a JSON array of {n} numbers, each between -1.0 (very negative) "
        f"and 1.0 (very positive). 0 = neutral.\n\n"
        + "\n\n".join(blocks)
        + f"\n\nReturn JSON array of {n} floats, e.g. [0.7, -0.2, 0.5]"
    )


def _clamp(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:  # NaN
        return 0.0
    return max(-1.0, min(1.0, v))


class SentimentAnalyzer:
    """Scores mention sentiment in [-1, 1] per artifact."""

    def __init__(
        self,
        client: Any,
        batch_size: int = SENTIMENT_BATCH,
        pause: float = 0.5,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.client = client
        self.batch_size = batch_size
        self.pause = pause
        self._sleep = sleep

    async def score_batch(self, items: Sequence[SentimentItem]) -> List[float]:
        """One model call; aligned with `items`, neutral on failure."""
        if not items:
            return []

        prompt = build_sentiment_prompt(items)

        async def call() -> str:
            return await self.client.generate(
                prompt, max_output_tokens=max(100, len(items) * 15), json_mode=True
            )

        try:
            raw = await with_retry(call, GEMINI_RETRY, retry_on=(QuotaExceededError,), sleep=self._sleep)
            values = repair_json_array(raw)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Sentiment batch failed: {str(e)[:100]}")
            return [0.0] * len(items)

        scores = [_clamp(v) for v in values[:len(items)]]
        return scores + [0.0] * (len(items) - len(scores))

    async def score(self, items: Sequence[SentimentItem]) -> List[float]:
        """Score any number of items in batches."""
        scores: List[float] = []
        for i in range(0, len(items), self.batch_size):
            if i:
                await self._sleep(self.pause)
            scores.extend(await self.score_batch(items[i:i + self.batch_size]))
        return scores
