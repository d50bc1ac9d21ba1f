"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .aggregator import (
    BaseAggregator,
    CountAggregator,
    PairSumAggregator,
    UniqueSetAggregator,
    make_aggregator,
)
from .keys import UNKNOWN_LABEL, strip_port, suffix_label
from .models import PairTotals
from .time_window import WindowScheduler

__all__ = [
    "BaseAggregator",
    "UniqueSetAggregator",
    "CountAggregator",
    "PairSumAggregator",
    "make_aggregator",
    "PairTotals",
    "WindowScheduler",
    "strip_port",
    "suffix_label",
    "UNKNOWN_LABEL",
]
