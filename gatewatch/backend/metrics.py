"""
backend/metrics.py

Lightweight thread-safe counters for the monitoring pipeline.
Counters are guarded by a threading.Lock so they can be read from any thread.

Lines that match no grammar are deliberately not counted.

Usage:
    from gatewatch.backend.metrics import METRICS
    METRICS.records_merged.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all pipeline counters."""

    def __init__(self) -> None:
        self.lines_read: Counter = Counter()
        """Lines received from the line source."""

        self.records_merged: Counter = Counter()
        """Records successfully merged into the current window."""

        self.records_rejected: Counter = Counter()
        """Parsed records whose merge raised; the window was left untouched."""

        self.reports_emitted: Counter = Counter()
        """Reports written, periodic and final."""

    def as_dict(self) -> dict:
        """Return all counters as a plain dict."""
        return {
            "lines_read": self.lines_read.value,
            "records_merged": self.records_merged.value,
            "records_rejected": self.records_rejected.value,
            "reports_emitted": self.reports_emitted.value,
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Shared by the pipeline, reporter and main
METRICS = Metrics()
