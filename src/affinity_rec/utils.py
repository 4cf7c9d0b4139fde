"""Utility helpers for affinity_rec."""

import time
import logging

from .errors import RecommendationTimeout

logger = logging.getLogger(__name__)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class Deadline:
    """
    Cancellation token for long inline scans.

    A budget of None (or <= 0) never expires.

    Example:
        deadline = Deadline(2.0)
        for peer in corpus:
            deadline.check("peer scan")
            ...
    """

    def __init__(self, seconds: float | None, clock=time.monotonic):
        self.seconds = seconds if seconds and seconds > 0 else None
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed > self.seconds

    def check(self, stage: str) -> None:
        """Raise RecommendationTimeout if the budget is spent."""
        if self.expired():
            elapsed = self.elapsed
            logger.warning(f"{stage} aborted after {elapsed:.2f}s (budget {self.seconds:.2f}s)")
            raise RecommendationTimeout(stage, elapsed, self.seconds)
