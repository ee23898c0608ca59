"""
Trending score: popularity from repository metadata alone.

    stars    min(40, floor(log10(max(1, stars)) * 15))
    forks    min(15, floor(log10(max(1, forks)) * 8))
    recency  20 (<14d), 15 (<30d), 8 (<90d), else 0

Total is clamped to [0, 100].
"""

import math
from datetime import datetime, timezone
from typing import Optional, Union

STAR_CAP = 40
FORK_CAP = 15

# (max age in days, points), checked in order
RECENCY_STEPS = ((14, 20), (30, 15), (90, 8))


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """ISO 8601 string or datetime -> aware datetime (UTC assumed when naive)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def star_points(stars: int) -> int:
    return min(STAR_CAP, math.floor(math.log10(max(1, stars or 0)) * 15))


def fork_points(forks: int) -> int:
    return min(FORK_CAP, math.floor(math.log10(max(1, forks or 0)) * 8))


def recency_points(updated_at: Union[str, datetime, None], now: Optional[datetime] = None) -> int:
    updated = parse_timestamp(updated_at)
    if updated is None:
        return 0
    now = now or datetime.now(timezone.utc)
    days = (now - updated).total_seconds() / 86400
    for max_days, points in RECENCY_STEPS:
        if days < max_days:
            return points
    return 0


def compute_trending_score(
    stars: int,
    forks: int,
    updated_at: Union[str, datetime, None],
    now: Optional[datetime] = None,
) -> int:
    total = star_points(stars) + fork_points(forks) + recency_points(updated_at, now)
    return max(0, min(100, total))
