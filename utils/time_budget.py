"""
Wall-clock budget for long-running modes.

Checked between coarse units of work (page, partition, enrichment wave);
expiry means "stop starting new work and flush", never an abrupt abort.
"""

from __future__ import annotations

import time
from typing import Callable, Optional


class TimeBudget:
    """A run-scoped deadline. `minutes=None` or 0 means unlimited."""

    def __init__(self, minutes: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.started_at = clock()
        self.seconds = float(minutes) * 60.0 if minutes else None

    @classmethod
    def unlimited(cls) -> "TimeBudget":
        return cls(None)

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started_at

    @property
    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed)

    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed >= self.seconds

    def __repr__(self) -> str:
        if self.seconds is None:
            return "TimeBudget(unlimited)"
        return f"TimeBudget({self.elapsed:.0f}s/{self.seconds:.0f}s)"
