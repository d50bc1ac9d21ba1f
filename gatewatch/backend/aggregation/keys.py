"""
aggregation/keys.py

Key extraction helpers shared by every aggregation strategy.

strip_port   — '1.2.3.4.12345' / '1.2.3.4.http' → '1.2.3.4'
suffix_label — 'www.google.co.jp' → 'jp'

Both are pure functions. strip_port assumes dotted-quad IPv4 as printed by
``tcpdump -n``; an IPv6 literal or a hostname with more than four labels is
truncated to its first four dot-separated parts.
"""

from __future__ import annotations

UNKNOWN_LABEL = "(unknown)"

_IPV4_PARTS = 4


def strip_port(address: str) -> str:
    """Drop a trailing port or service component from a tcpdump address."""
    parts = address.split(".")
    if len(parts) > _IPV4_PARTS:
        return ".".join(parts[:_IPV4_PARTS])
    return address


def suffix_label(name: str) -> str:
    """
    Return the lower-cased final dot-delimited segment of ``name``.

    Empty trailing segments are ignored ('example.com.' → 'com'), so a name
    made only of dots, or an empty name, has no segments and maps to
    ``UNKNOWN_LABEL``.
    """
    parts = name.split(".")
    while parts and not parts[-1]:
        parts.pop()
    if not parts:
        return UNKNOWN_LABEL
    return parts[-1].lower()
