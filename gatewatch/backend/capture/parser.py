"""
capture/parser.py

Converts one line of ``tcpdump -n -l -t`` text output into a typed record.

Design principles:
  - Pure and synchronous: the same line always yields the same result.
  - Returns None for any line that does not match the active grammar.
    Capture output is mostly lines we do not care about (answers, IPv6,
    ARP, status chatter), so a miss is never an error and is never logged.
  - Matching is anchored at the start of the line; whatever follows the
    captured fields (packet metadata, flags, payload summaries) is ignored.

Grammars:
  DNS   IP 172.16.0.120.53723 > 8.8.8.8.53: 12345+ A? www.google.com. (32)
        → source '172.16.0.120', name 'www.google.com'
        (query type A? / AAAA? / PTR? / ... is matched but not kept)
  FLOW  IP 10.0.0.5.51000 > 93.184.216.34.443: Flags [P.], ..., length 517
        → source '10.0.0.5.51000', destination '93.184.216.34.443', 517
        (no 'length N' anywhere in the line → 0)
"""

from __future__ import annotations

import re

from ..aggregation.keys import strip_port
from ..models import FlowRecord, ParserMode, QueryRecord, Record, TldRecord

_DNS_QUERY_RE = re.compile(
    r"IP (?P<src>.+?)\.\d+ > .+?: \d+\+ \w+\? (?P<name>.+?)\. \("
)

_FLOW_RE = re.compile(
    r"IP (?P<src>.+?) > (?P<dst>.+?):(?:.*?\blength (?P<length>\d+))?"
)


def parse_line(line: str, mode: ParserMode | str) -> Record | None:
    """
    Parse a single capture line.

    Args:
        line: Raw text line; a trailing newline is tolerated.
        mode: Which grammar to apply and which record variant to build.

    Returns:
        QueryRecord / TldRecord (DNS modes) or FlowRecord (flow mode),
        or None when the line does not match.
    """
    mode = ParserMode(mode)
    text = line.rstrip("\r\n")

    if mode is ParserMode.FLOW:
        return _parse_flow(text)
    return _parse_dns(text, mode)


def _parse_dns(text: str, mode: ParserMode) -> QueryRecord | TldRecord | None:
    match = _DNS_QUERY_RE.match(text)
    if match is None:
        return None
    source = strip_port(match.group("src"))
    name = match.group("name")
    if mode is ParserMode.DNS_TLD:
        return TldRecord(source_address=source, queried_name=name)
    return QueryRecord(source_address=source, queried_name=name)


def _parse_flow(text: str) -> FlowRecord | None:
    match = _FLOW_RE.match(text)
    if match is None:
        return None
    length = match.group("length")
    return FlowRecord(
        source_address=match.group("src"),
        destination_address=match.group("dst"),
        byte_length=int(length) if length is not None else 0,
    )
