"""
aggregation/time_window.py

WindowScheduler — decides when the current aggregation window is over.

Design:
  - No background timer: the pipeline calls check() after every line,
    so a window lasts at least ``interval`` seconds and at most
    ``interval`` plus the wait for (and processing of) one more line.
  - Strict boundary: a window expires only once *more than* ``interval``
    seconds have elapsed since the last flush.
  - The next window starts at the moment expiry was detected, not on a
    fixed schedule, so windows drift later but never get shorter.
  - Wall-clock time by default (``time.time``); tests inject a fake clock.

Thread safety: NOT thread-safe. Called exclusively from the pipeline coroutine.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class WindowScheduler:
    """
    Tracks ``last_flush_time`` and reports when a window has elapsed.

    Args:
        interval: Nominal window length in seconds. Must be > 0.
        clock:    Zero-argument callable returning the current time in seconds.
    """

    def __init__(self, interval: float, clock: Clock = time.time) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0 — got {interval}")
        self.interval = float(interval)
        self._clock = clock
        self.last_flush_time: float = clock()
        logger.debug("WindowScheduler initialised — interval=%.1fs", self.interval)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def now(self) -> float:
        return self._clock()

    def elapsed(self, now: float | None = None) -> float:
        """Seconds since the last flush."""
        if now is None:
            now = self._clock()
        return now - self.last_flush_time

    def should_flush(self, now: float | None = None) -> bool:
        """True iff strictly more than ``interval`` seconds have elapsed."""
        return self.elapsed(now) > self.interval

    def mark_flushed(self, now: float | None = None) -> None:
        """Start a new window at ``now``."""
        self.last_flush_time = self._clock() if now is None else now

    def check(self) -> bool:
        """
        Read the clock once; on expiry start the next window at that instant.

        Returns:
            True if the caller must flush now.
        """
        now = self._clock()
        if not self.should_flush(now):
            return False
        logger.debug(
            "Window elapsed — %.2fs since last flush (interval %.1fs)",
            now - self.last_flush_time,
            self.interval,
        )
        self.mark_flushed(now)
        return True

    def __repr__(self) -> str:  # pragma: no cover
        return f"WindowScheduler(interval={self.interval}s last_flush={self.last_flush_time:.3f})"
