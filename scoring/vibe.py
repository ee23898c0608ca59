"""
Vibe score: social momentum from downloads, mentions and sentiment.

Five components, each capped on its own, total capped at 100:

    download   min(30, floor(log10(max(1, npm + pypi)) * 8))
    mention    min(30, 5 * mentions_7d + mentions_30d)
    quality    min(20, round(log10(max(1, avg_score)) * 10))
    sentiment  round((clamp(sentiment, -1, 1) + 1) * 5)
    recency    10 if mentions_7d, 5 if mentions_30d, else 0

round() is half-up. Every input is stored next to the components on the
artifact row, so any breakdown can be recomputed from the row alone.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from scoring.trending import parse_timestamp

DOWNLOAD_CAP = 30
MENTION_CAP = 30
QUALITY_CAP = 20


def round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


@dataclass
class VibeInputs:
    """Raw signals for one artifact."""
    npm_downloads: int = 0
    pypi_downloads: int = 0
    mentions_7d: int = 0
    mentions_30d: int = 0
    avg_score: float = 0.0
    sentiment_avg: float = 0.0

    def to_row(self) -> Dict[str, Any]:
        return {
            "npm_downloads_weekly": self.npm_downloads,
            "pypi_downloads_weekly": self.pypi_downloads,
            "mention_count_7d": self.mentions_7d,
            "mention_count_30d": self.mentions_30d,
            "mention_avg_score": self.avg_score,
            "sentiment_avg": self.sentiment_avg,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "VibeInputs":
        return cls(
            npm_downloads=row.get("npm_downloads_weekly") or 0,
            pypi_downloads=row.get("pypi_downloads_weekly") or 0,
            mentions_7d=row.get("mention_count_7d") or 0,
            mentions_30d=row.get("mention_count_30d") or 0,
            avg_score=row.get("mention_avg_score") or 0.0,
            sentiment_avg=row.get("sentiment_avg") or 0.0,
        )


def download_signal(inputs: VibeInputs) -> int:
    downloads = (inputs.npm_downloads or 0) + (inputs.pypi_downloads or 0)
    return min(DOWNLOAD_CAP, math.floor(math.log10(max(1, downloads)) * 8))


def mention_signal(inputs: VibeInputs) -> int:
    return min(MENTION_CAP, 5 * inputs.mentions_7d + inputs.mentions_30d)


def quality_signal(inputs: VibeInputs) -> int:
    return min(QUALITY_CAP, round_half_up(math.log10(max(1.0, inputs.avg_score or 0.0)) * 10))


def sentiment_signal(inputs: VibeInputs) -> int:
    s = max(-1.0, min(1.0, inputs.sentiment_avg or 0.0))
    return round_half_up((s + 1) * 5)


def recency_signal(inputs: VibeInputs) -> int:
    if inputs.mentions_7d > 0:
        return 10
    if inputs.mentions_30d > 0:
        return 5
    return 0


@dataclass
class VibeBreakdown:
    download: int
    mention: int
    quality: int
    sentiment: int
    recency: int

    @classmethod
    def compute(cls, inputs: VibeInputs) -> "VibeBreakdown":
        return cls(
            download=download_signal(inputs),
            mention=mention_signal(inputs),
            quality=quality_signal(inputs),
            sentiment=sentiment_signal(inputs),
            recency=recency_signal(inputs),
        )

    @property
    def total(self) -> int:
        return min(100, self.download + self.mention + self.quality + self.sentiment + self.recency)

    def to_row(self) -> Dict[str, Any]:
        return {
            "vibe_score": self.total,
            "vibe_download_signal": self.download,
            "vibe_mention_signal": self.mention,
            "vibe_quality_signal": self.quality,
            "vibe_sentiment_signal": self.sentiment,
            "vibe_recency_signal": self.recency,
        }


def compute_vibe_score(inputs: VibeInputs) -> int:
    return VibeBreakdown.compute(inputs).total


def summarize_mentions(
    mentions: Iterable[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Mention counts and average score.

    Every mention passed in is inside the 30-day lookback; those newer than
    7 days also count toward mentions_7d.
    """
    now = now or datetime.now(timezone.utc)
    week_ago = now - timedelta(days=7)

    items = list(mentions)
    recent = 0
    for m in items:
        mentioned_at = parse_timestamp(m.get("mentioned_at"))
        if mentioned_at is not None and mentioned_at > week_ago:
            recent += 1

    avg = sum((m.get("score") or 0) for m in items) / len(items) if items else 0.0
    return {"mentions_7d": recent, "mentions_30d": len(items), "avg_score": avg}
