"""
capture/filter.py

BPF filter and tcpdump command-line builders.

The BPF filter is applied by libpcap inside tcpdump, so only DNS traffic
(DNS modes) or IPv4 traffic (flow mode) is ever printed for us to parse.

Usage:
    bpf = build_bpf_filter(ParserMode.DNS_QUERY)            # 'port 53'
    bpf = build_bpf_filter(ParserMode.FLOW, ["10.0.0.1"])   # 'ip and not (host 10.0.0.1)'
    cmd = build_tcpdump_command("wlan0", bpf)
    # ['sudo', 'tcpdump', '-i', 'wlan0', '-nl', '-t', 'ip and not (host 10.0.0.1)']
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..models import ParserMode

logger = logging.getLogger(__name__)

_DNS_BASE = "port 53"
_FLOW_BASE = "ip"


def build_bpf_filter(
    mode: ParserMode | str,
    exclude_hosts: Sequence[str] | None = None,
) -> str:
    """
    Build the BPF filter string for a parser mode.

    Args:
        mode:          DNS modes capture port 53 only; flow mode captures all IPv4.
        exclude_hosts: Optional hosts to drop at capture time (e.g. the
                       monitoring host's own SSH session).

    Examples:
        >>> build_bpf_filter("dns-query")
        'port 53'
        >>> build_bpf_filter("flow", ["10.0.0.1", "10.0.0.2"])
        'ip and not (host 10.0.0.1 or host 10.0.0.2)'
    """
    base = _DNS_BASE if ParserMode(mode).is_dns else _FLOW_BASE
    parts = [base]

    hosts = [h.strip() for h in exclude_hosts or () if h and h.strip()]
    if hosts:
        host_clauses = " or ".join(f"host {h}" for h in hosts)
        parts.append(f"not ({host_clauses})")

    bpf = " and ".join(parts)
    logger.debug("Built BPF filter: %r", bpf)
    return bpf


def build_tcpdump_command(
    interface: str,
    bpf_filter: str,
    use_sudo: bool = True,
    tcpdump_path: str = "tcpdump",
) -> list[str]:
    """
    Build the argv that starts the capture process.

    -n  no name resolution (numeric addresses and ports)
    -l  line-buffered stdout so each packet arrives as soon as it is printed
    -t  no timestamps, keeping every line anchored on 'IP ...'
    """
    argv = [tcpdump_path, "-i", interface, "-nl", "-t", bpf_filter]
    if use_sudo:
        argv.insert(0, "sudo")
    return argv
