"""
Completed-task counter for progress reporting.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)


def format_elapsed(seconds: float) -> str:
    """``h:mm:ss`` rendering of a duration."""
    return str(timedelta(seconds=int(max(0.0, seconds))))


class ProgressCounter:
    """
    Monotonic count of completed tasks.

    ``increment()`` is synchronous, so concurrent workers on one event loop can
    never interleave inside it.
    """

    def __init__(self, total: int, *, log_every: int = 1):
        self.total = int(total)
        self.current = 0
        self.overall_start = datetime.now()
        self._start_perf = time.perf_counter()
        self._log_every = max(1, int(log_every))
        self.completed_at: Optional[datetime] = None

    @property
    def elapsed_seconds(self) -> float:
        return time.perf_counter() - self._start_perf

    @property
    def done(self) -> bool:
        return self.current >= self.total

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return 100.0 * self.current / self.total

    def increment(self) -> int:
        """Advance by one completed task and return the new count."""
        if self.current >= self.total:
            raise RuntimeError(
                f"progress overflow: {self.current + 1} completions for {self.total} tasks"
            )
        self.current += 1

        if self.current == self.total:
            self.completed_at = datetime.now()
        if self.current == self.total or self.current % self._log_every == 0:
            logger.info(
                "Progress: %d/%d (%.1f%%) elapsed %s",
                self.current,
                self.total,
                self.percent,
                format_elapsed(self.elapsed_seconds),
            )
        return self.current
