#!/usr/bin/env python
#
# FindFoci Optimiser - Progress Counters
# © 2025 FindFoci Optimiser Authors
#

"""
Progress accounting for optimisation runs.

``Counter`` is used by the single-image path; ``ConcurrentCounter`` is the
one object shared by every worker of a batch. Both report progress through
an optional callback at most every ``max(1, total // 400)`` increments.
"""

import logging
import threading
from typing import Callable, Optional

# Module-level logger for progress diagnostics
logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_UPDATES_PER_RUN = 400


class Counter:
    """Sequential progress counter.

    Attributes:
        total: Expected number of ticks.
        count: Ticks so far.
        interval: Ticks between callback invocations.

    Example:
        >>> counter = Counter(1000, callback=lambda done, total: None)
        >>> counter.tick()
        >>> counter.tick(10)
    """

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None) -> None:
        self.total = max(0, int(total))
        self.count = 0
        self.interval = max(1, self.total // _UPDATES_PER_RUN)
        self.callback = callback
        self._next_report = self.interval

    def tick(self, amount: int = 1) -> int:
        self.count += amount
        self._maybe_report(self.count)
        return self.count

    def _maybe_report(self, count: int) -> None:
        if self.callback is None:
            return
        if count >= self._next_report or count >= self.total:
            # Skip ahead past any intervals covered by a bulk tick
            self._next_report = (count // self.interval + 1) * self.interval
            self.callback(count, self.total)

    @property
    def fraction(self) -> float:
        if self.total == 0:
            return 1.0
        return min(1.0, self.count / self.total)


class ConcurrentCounter(Counter):
    """Counter safe for concurrent ticks from a worker pool."""

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None) -> None:
        super().__init__(total, callback)
        self._lock = threading.Lock()

    def tick(self, amount: int = 1) -> int:
        with self._lock:
            self.count += amount
            count = self.count
            self._maybe_report(count)
        return count


def log_progress(count: int, total: int) -> None:
    """Progress callback that writes to the module logger."""
    percent = 100.0 * count / total if total else 100.0
    logger.info("Progress: %d / %d combinations (%.1f%%)", count, total, percent)


__all__ = ["ConcurrentCounter", "Counter", "ProgressCallback", "log_progress"]
