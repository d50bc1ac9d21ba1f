"""
aggregation/aggregator.py

Per-window aggregation state, one strategy per AggregationMode.

    UniqueSetAggregator  source → unique queried names
    CountAggregator      source → suffix label → query count
    PairSumAggregator    source → destination → PairTotals

Every strategy keys first by source address, creates keys lazily through
``_slot()`` (explicit get-or-insert-default), and never deletes a key until
the whole state is replaced by ``reset()`` / ``drain()``.

``merge_record()`` derives every key from the record *before* touching the
state, so a record that fails key extraction leaves the window untouched.

Thread safety: NOT thread-safe. Called exclusively from the pipeline
coroutine; ``drain()`` swaps the state reference in a single step so the
reporter always renders a detached snapshot.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, TypeVar

from ..models import AggregationMode, FlowRecord, QueryRecord, Record, TldRecord
from .keys import strip_port, suffix_label
from .models import CountState, PairSumState, PairTotals, UniqueSetState

logger = logging.getLogger(__name__)

_V = TypeVar("_V")


class BaseAggregator(ABC):
    """
    Contract shared by the three aggregation strategies.

    Subclasses set ``mode`` and implement ``merge()`` (mode-specific
    signature) plus ``merge_record()``.
    """

    mode: AggregationMode

    def __init__(self) -> None:
        self._state: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    @abstractmethod
    def merge_record(self, record: Record) -> None:
        """Extract keys from ``record`` and merge it into the window."""
        ...

    @staticmethod
    def _slot(table: Dict[str, _V], key: str, default: Callable[[], _V]) -> _V:
        """Return ``table[key]``, inserting ``default()`` on first touch."""
        value = table.get(key)
        if value is None:
            value = default()
            table[key] = value
        return value

    def _check(self, record: Record, expected: type) -> None:
        if not isinstance(record, expected):
            raise TypeError(
                f"{type(self).__name__} cannot merge {type(record).__name__}"
            )

    # ------------------------------------------------------------------
    # Window lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Discard the whole window."""
        self._state = {}

    def drain(self) -> Dict[str, Any]:
        """Return the current state and start a fresh, empty window."""
        state, self._state = self._state, {}
        logger.debug("%s drained — %d source(s)", type(self).__name__, len(state))
        return state

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the current state; the window keeps accumulating."""
        return copy.deepcopy(self._state)

    def is_empty(self) -> bool:
        return not self._state

    def sources(self) -> list[str]:
        return list(self._state)

    def __len__(self) -> int:
        return len(self._state)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{type(self).__name__} mode={self.mode.value} sources={len(self)}>"


# ---------------------------------------------------------------------------
# unique-set
# ---------------------------------------------------------------------------

class UniqueSetAggregator(BaseAggregator):
    """Unique queried names per source; re-inserting a name is a no-op."""

    mode = AggregationMode.UNIQUE_SET
    _state: UniqueSetState

    def merge(self, source: str, name: str) -> None:
        names = self._slot(self._state, source, dict)
        names.setdefault(name, None)

    def merge_record(self, record: Record) -> None:
        self._check(record, QueryRecord)
        source = strip_port(record.source_address)
        self.merge(source, record.queried_name)


# ---------------------------------------------------------------------------
# count
# ---------------------------------------------------------------------------

class CountAggregator(BaseAggregator):
    """Query count per (source, suffix label)."""

    mode = AggregationMode.COUNT
    _state: CountState

    def merge(self, source: str, label: str) -> None:
        counts = self._slot(self._state, source, dict)
        counts[label] = counts.get(label, 0) + 1

    def merge_record(self, record: Record) -> None:
        self._check(record, TldRecord)
        source = strip_port(record.source_address)
        label = suffix_label(record.queried_name)
        self.merge(source, label)


# ---------------------------------------------------------------------------
# pair-sum
# ---------------------------------------------------------------------------

class PairSumAggregator(BaseAggregator):
    """Packet / byte totals per (source, destination) pair."""

    mode = AggregationMode.PAIR_SUM
    _state: PairSumState

    def merge(self, source: str, destination: str, length: int) -> None:
        if length < 0:
            raise ValueError(f"negative byte length: {length}")
        destinations = self._slot(self._state, source, dict)
        self._slot(destinations, destination, PairTotals).add(length)

    def merge_record(self, record: Record) -> None:
        self._check(record, FlowRecord)
        source = strip_port(record.source_address)
        destination = strip_port(record.destination_address)
        self.merge(source, destination, record.byte_length)

    def snapshot(self) -> PairSumState:
        return {
            src: {dst: totals.copy() for dst, totals in dsts.items()}
            for src, dsts in self._state.items()
        }


_STRATEGIES: dict[AggregationMode, type[BaseAggregator]] = {
    AggregationMode.UNIQUE_SET: UniqueSetAggregator,
    AggregationMode.COUNT:      CountAggregator,
    AggregationMode.PAIR_SUM:   PairSumAggregator,
}


def make_aggregator(mode: AggregationMode | str) -> BaseAggregator:
    """Instantiate the aggregation strategy for ``mode``."""
    return _STRATEGIES[AggregationMode(mode)]()
