"""
capture/__init__.py

Public API for the capture sub-package.
"""

from .filter import build_bpf_filter, build_tcpdump_command
from .parser import parse_line
from .source import (
    CaptureError,
    IterableLineSource,
    LineSource,
    PipeLineSource,
    StreamLineSource,
    TcpdumpSource,
)

__all__ = [
    "parse_line",
    "build_bpf_filter",
    "build_tcpdump_command",
    "CaptureError",
    "LineSource",
    "TcpdumpSource",
    "PipeLineSource",
    "StreamLineSource",
    "IterableLineSource",
]
