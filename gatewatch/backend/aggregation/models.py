"""
aggregation/models.py

Accumulator types held by the aggregators.

PairTotals — running packet / byte counters for one (source, destination) pair

The three per-window state shapes are plain dicts keyed by source address:
    UniqueSetState  source → ordered set of queried names (dict keys)
    CountState      source → {suffix label → count}
    PairSumState    source → {destination → PairTotals}
Python dicts keep insertion order, which the reporter relies on for a
stable source ordering and tie-breaking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(slots=True)
class PairTotals:
    """
    Packet and byte totals for one (source, destination) pair.

    Both counters only ever grow within a window.
    """

    packet_count: int = 0
    byte_total: int = 0

    def add(self, length: int) -> None:
        self.packet_count += 1
        self.byte_total += length

    def copy(self) -> "PairTotals":
        return PairTotals(self.packet_count, self.byte_total)

    def __repr__(self) -> str:
        return f"PairTotals(pkts={self.packet_count} bytes={self.byte_total})"


UniqueSetState = Dict[str, Dict[str, None]]
CountState = Dict[str, Dict[str, int]]
PairSumState = Dict[str, Dict[str, PairTotals]]
