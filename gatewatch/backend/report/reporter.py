"""
report/reporter.py

Reporter — renders one window of aggregation state as console text.

Layout (every mode):

    --- [2026-10-18 14:03:12 +0900] DNS query TLDs (last 30s) ---
    ▼ source: 10.0.0.5
        -> TLD: jp         | count: 2
        -> TLD: com        | count: 1
    --------------------
    --- end of report ---

Ordering rules inside a source group:
  unique-set  names in first-seen order
  count       labels by count, descending (ties keep first-seen order)
  pair-sum    destinations by packet count, then byte total, descending;
              only the first ``top_n`` are listed and the rest are summarised
              in a single "... more destinations omitted" line

An empty window renders a single "no activity" line instead of groups.

flush() drains the aggregator *before* rendering, so the snapshot being
printed is already detached from the live window.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import IO, Any, Callable, Mapping

from ..aggregation.aggregator import BaseAggregator
from ..aggregation.models import PairTotals
from ..metrics import METRICS
from ..models import AggregationMode

logger = logging.getLogger(__name__)

NO_ACTIVITY_LINE = " (no activity this window)"
END_OF_REPORT = "--- end of report ---"
FINAL_BANNER = "--- final report at shutdown ---"
FINISHED_LINE = "analysis finished."

_TITLES = {
    AggregationMode.UNIQUE_SET: "DNS queries",
    AggregationMode.COUNT:      "DNS query TLDs",
}


class Reporter:
    """
    Args:
        mode:     Aggregation mode whose state this reporter renders.
        interval: Configured window length in seconds (shown in the header).
        top_n:    Per-source destination limit (pair-sum only).
        stream:   Text stream reports are written to (default: stdout).
        clock:    Returns the current wall-clock time for the header.
    """

    def __init__(
        self,
        mode: AggregationMode | str,
        interval: float,
        top_n: int = 10,
        stream: IO[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if top_n <= 0:
            raise ValueError(f"top_n must be > 0 — got {top_n}")
        self.mode = AggregationMode(mode)
        self.interval = interval
        self.top_n = top_n
        self._stream = stream
        self._clock = clock
        self._group_renderers: dict[AggregationMode, Callable[[Any], list[str]]] = {
            AggregationMode.UNIQUE_SET: self._render_names,
            AggregationMode.COUNT:      self._render_counts,
            AggregationMode.PAIR_SUM:   self._render_pairs,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def flush(self, aggregator: BaseAggregator, final: bool = False) -> str:
        """
        Drain ``aggregator``, render the drained window and write it out.

        Args:
            final: Wrap the report in the shutdown banner / finished line.

        Returns:
            The text that was written.
        """
        state = aggregator.drain()
        text = self.render(state)
        if final:
            text = f"\n{FINAL_BANNER}\n{text}{FINISHED_LINE}\n"
        self._write(text)
        METRICS.reports_emitted.inc()
        logger.debug("Report written — sources=%d final=%s", len(state), final)
        return text

    def render(self, state: Mapping[str, Any], now: float | None = None) -> str:
        """Render a drained window as report text (always newline-terminated)."""
        lines = [self._header(self._clock() if now is None else now)]

        if not state:
            lines.append(NO_ACTIVITY_LINE)
        else:
            render_group = self._group_renderers[self.mode]
            for source, accumulator in state.items():
                lines.append(f"▼ source: {source}")
                lines.extend(render_group(accumulator))

        lines.append(END_OF_REPORT)
        lines.append("")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _header(self, now: float) -> str:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S %z", time.localtime(now))
        if self.mode is AggregationMode.PAIR_SUM:
            title = f"Traffic summary (top {self.top_n})"
        else:
            title = _TITLES[self.mode]
        return f"--- [{stamp}] {title} (last {self.interval:g}s) ---"

    def _render_names(self, names: Mapping[str, None]) -> list[str]:
        lines = [f"    -> {name}" for name in names]
        lines.append("-" * 20)
        return lines

    def _render_counts(self, counts: Mapping[str, int]) -> list[str]:
        ranked = sorted(counts.items(), key=lambda item: -item[1])
        lines = [f"    -> TLD: {label:<10} | count: {count}" for label, count in ranked]
        lines.append("-" * 20)
        return lines

    def _render_pairs(self, destinations: Mapping[str, PairTotals]) -> list[str]:
        ranked = sorted(
            destinations.items(),
            key=lambda item: (-item[1].packet_count, -item[1].byte_total),
        )
        lines = [
            f"  {rank}. dst: {dst:<15} | packets: {totals.packet_count:>6} "
            f"| bytes: {totals.byte_total:>9}"
            for rank, (dst, totals) in enumerate(ranked[: self.top_n], start=1)
        ]
        omitted = len(ranked) - self.top_n
        if omitted > 0:
            lines.append(f"  ... ({omitted} more destinations omitted)")
        lines.append("-" * 30)
        return lines

    def _write(self, text: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        print(text, end="", file=stream, flush=True)
