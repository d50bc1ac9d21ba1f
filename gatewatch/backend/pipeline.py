"""
backend/pipeline.py

Pipeline — the run loop tying every stage together:

    line source → parse_line → aggregator.merge_record → scheduler.check
                                                          └→ reporter.flush

States:
    RUNNING     reading lines; every line is parsed, merged and followed by
                a window check before the next line is read
    DRAINING    writing exactly one final report (even for an empty window)
    TERMINATED  done; nothing is merged or reported any more

Transitions:
    end of stream          RUNNING → DRAINING → TERMINATED
    task cancelled         RUNNING → DRAINING → TERMINATED, then re-raises
                           CancelledError (operator interrupt still gets
                           its final report)
    source failure         RUNNING → TERMINATED, error propagates, no
                           final report

A record whose merge raises is logged and counted, and the loop moves on.
Lines that match no grammar are dropped without a trace.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .aggregation.aggregator import BaseAggregator
from .aggregation.time_window import WindowScheduler
from .capture.parser import parse_line
from .capture.source import LineSource
from .metrics import METRICS
from .report.reporter import Reporter

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    RUNNING    = "RUNNING"
    DRAINING   = "DRAINING"
    TERMINATED = "TERMINATED"


class Pipeline:
    """
    Single-threaded ingestion loop.

    Args:
        source:     Where lines come from (see capture/source.py).
        aggregator: Strategy matching the configured AggregationMode.
        scheduler:  Decides when the current window ends.
        reporter:   Renders and writes drained windows.
    """

    def __init__(
        self,
        source: LineSource,
        aggregator: BaseAggregator,
        scheduler: WindowScheduler,
        reporter: Reporter,
    ) -> None:
        self._source = source
        self._aggregator = aggregator
        self._scheduler = scheduler
        self._reporter = reporter
        self._parser_mode = aggregator.mode.parser_mode
        self.state = PipelineState.RUNNING

    # ------------------------------------------------------------------
    # Main async loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Consume lines until end of stream, cancellation or source failure.

        On CancelledError the final report is written before re-raising.
        """
        logger.info(
            "Pipeline started — mode=%s interval=%.1fs",
            self._aggregator.mode.value,
            self._scheduler.interval,
        )
        try:
            while self.state is PipelineState.RUNNING:
                line = await self._source.readline()
                if line is None:
                    logger.info("Line source exhausted — draining")
                    break
                self.process_line(line)
        except asyncio.CancelledError:
            logger.info("Pipeline cancellation received — draining")
            self._drain()
            raise
        except Exception:
            self.state = PipelineState.TERMINATED
            logger.error("Line source failed — terminating without final report")
            raise
        self._drain()

    # ------------------------------------------------------------------
    # Per-line step
    # ------------------------------------------------------------------

    def process_line(self, line: str) -> bool:
        """
        Parse, merge and window-check one line.

        Returns:
            True if this line closed a window and a report was written.
        """
        METRICS.lines_read.inc()

        record = parse_line(line, self._parser_mode)
        if record is not None:
            try:
                self._aggregator.merge_record(record)
            except Exception as exc:
                METRICS.records_rejected.inc()
                logger.exception("Record %r rejected: %s", record, exc)
            else:
                METRICS.records_merged.inc()

        if self._scheduler.check():
            self._reporter.flush(self._aggregator)
            return True
        return False

    def _drain(self) -> None:
        """Write the one final report; later calls are no-ops."""
        if self.state is not PipelineState.RUNNING:
            return
        self.state = PipelineState.DRAINING
        self._reporter.flush(self._aggregator, final=True)
        self.state = PipelineState.TERMINATED
        logger.info("Pipeline terminated — metrics: %s", METRICS.as_dict())
