"""
backend/models.py

Shared dataclasses and enums for every stage of the pipeline.

Parser output (one variant per recognised line shape):
    QueryRecord — a DNS query, name kept verbatim
    TldRecord   — a DNS query whose name is reduced to its suffix label
    FlowRecord  — one IP packet between two endpoints

The aggregation-side accumulator types live in aggregation/models.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

class ParserMode(str, Enum):
    DNS_QUERY = "dns-query"
    DNS_TLD   = "dns-tld"
    FLOW      = "flow"

    @property
    def is_dns(self) -> bool:
        return self is not ParserMode.FLOW


class AggregationMode(str, Enum):
    UNIQUE_SET = "unique-set"
    COUNT      = "count"
    PAIR_SUM   = "pair-sum"

    @property
    def parser_mode(self) -> ParserMode:
        """The line grammar / record variant this aggregation consumes."""
        return _PARSER_MODES[self]


_PARSER_MODES = {
    AggregationMode.UNIQUE_SET: ParserMode.DNS_QUERY,
    AggregationMode.COUNT:      ParserMode.DNS_TLD,
    AggregationMode.PAIR_SUM:   ParserMode.FLOW,
}


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class QueryRecord:
    """A DNS query seen on the wire."""

    source_address: str
    """Querying host, port already removed, e.g. '10.0.0.5'."""

    queried_name: str
    """Queried name without the trailing dot, case preserved."""


@dataclass(frozen=True, slots=True)
class TldRecord:
    """Same shape as QueryRecord; aggregated by suffix label instead of name."""

    source_address: str
    queried_name: str


@dataclass(frozen=True, slots=True)
class FlowRecord:
    """One IP packet between two endpoints."""

    source_address: str
    """Source as printed by tcpdump, port still attached ('1.2.3.4.443')."""

    destination_address: str
    """Destination as printed by tcpdump, port still attached."""

    byte_length: int = 0
    """Value of the 'length N' field; 0 when the line carries none."""


Record = Union[QueryRecord, TldRecord, FlowRecord]
