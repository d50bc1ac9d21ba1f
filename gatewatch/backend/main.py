"""
backend/main.py

Command-line entry point.

    sudo gatewatch --iface wlan0 --mode count --interval 30
    tcpdump -i wlan0 -nl -t 'port 53' | gatewatch --mode unique-set --stdin

Reports go to stdout, logs and diagnostics to stderr.
Ctrl+C (SIGINT) or SIGTERM stops the capture after one final report.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import stat
import sys
from typing import NoReturn

from .aggregation import WindowScheduler, make_aggregator
from .capture import (
    CaptureError,
    LineSource,
    PipeLineSource,
    StreamLineSource,
    TcpdumpSource,
    build_bpf_filter,
    build_tcpdump_command,
)
from .config import settings
from .metrics import METRICS
from .models import AggregationMode
from .pipeline import Pipeline
from .report import Reporter

logger = logging.getLogger("gatewatch.main")


def build_source(args: argparse.Namespace) -> LineSource:
    """Pick the line source the arguments ask for."""
    if args.stdin:
        # `gatewatch --stdin < saved.txt` hands us a regular file, not a pipe
        if stat.S_ISREG(os.fstat(sys.stdin.fileno()).st_mode):
            sys.stdin.reconfigure(encoding="utf-8", errors="replace")
            return StreamLineSource(sys.stdin)
        return PipeLineSource(sys.stdin)
    if args.read:
        try:
            stream = open(args.read, encoding="utf-8", errors="replace")
        except OSError as exc:
            raise CaptureError(f"cannot open capture file {args.read!r}: {exc}") from exc
        return StreamLineSource(stream, close_stream=True)

    mode = AggregationMode(args.mode)
    bpf = build_bpf_filter(mode.parser_mode, args.exclude_host)
    command = build_tcpdump_command(
        args.iface,
        bpf,
        use_sudo=args.sudo and os.geteuid() != 0,
        tcpdump_path=settings.TCPDUMP_PATH,
    )
    return TcpdumpSource(command)


def _print_capture_failure(exc: CaptureError) -> None:
    print(f"\nERROR: {exc}", file=sys.stderr)
    if exc.stderr:
        print(exc.stderr, file=sys.stderr)
    if not exc.command:
        return
    print(
        "tcpdump could not be run or lacks capture privileges — "
        "check that it is installed and run gatewatch with sudo.",
        file=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def run(args: argparse.Namespace) -> int:
    """Run the pipeline until end of stream or shutdown; return the exit status."""
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    previous_handlers = {
        signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)
    }
    for signum in previous_handlers:
        signal.signal(signum, _signal_handler)
    try:
        return await _run_pipeline(args, shutdown_event)
    finally:
        for signum, handler in previous_handlers.items():
            # None means the handler was not installed from Python
            if handler is not None:
                signal.signal(signum, handler)


async def _run_pipeline(args: argparse.Namespace, shutdown_event: asyncio.Event) -> int:
    mode = AggregationMode(args.mode)
    try:
        source = build_source(args)
        await source.start()
    except CaptureError as exc:
        _print_capture_failure(exc)
        return 1

    aggregator = make_aggregator(mode)
    scheduler = WindowScheduler(args.interval)
    reporter = Reporter(mode, interval=args.interval, top_n=args.top_n)
    pipeline = Pipeline(source, aggregator, scheduler, reporter)

    logger.info(
        "gatewatch — iface=%r mode=%s interval=%gs top_n=%d (Ctrl+C to stop)",
        args.iface, mode.value, args.interval, args.top_n,
    )

    pipeline_task = asyncio.create_task(pipeline.run(), name="pipeline")
    shutdown_task = asyncio.create_task(shutdown_event.wait(), name="shutdown")
    await asyncio.wait({pipeline_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

    if not pipeline_task.done():
        pipeline_task.cancel()
    shutdown_task.cancel()

    exit_code = 0
    try:
        await pipeline_task
    except asyncio.CancelledError:
        pass
    except CaptureError as exc:
        _print_capture_failure(exc)
        exit_code = 1
    finally:
        await source.close()

    logger.info("gatewatch stopped — metrics: %s", METRICS.as_dict())
    return exit_code


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0 — got {value}")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0 — got {value}")
    return number


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gatewatch",
        description="Periodic DNS / traffic summaries from live tcpdump output",
    )
    parser.add_argument("--iface", default=settings.INTERFACE)
    parser.add_argument(
        "--mode", default=settings.MODE.value,
        choices=[m.value for m in AggregationMode],
    )
    parser.add_argument("--interval", type=_positive_float, default=settings.PRINT_INTERVAL)
    parser.add_argument("--top-n", type=_positive_int, default=settings.TOP_N)
    parser.add_argument(
        "--exclude-host", action="append", default=list(settings.EXCLUDE_HOSTS),
        help="host to filter out at capture time (repeatable)",
    )
    parser.add_argument(
        "--no-sudo", dest="sudo", action="store_false", default=settings.USE_SUDO,
        help="run tcpdump directly instead of through sudo",
    )
    inputs = parser.add_mutually_exclusive_group()
    inputs.add_argument(
        "--stdin", action="store_true",
        help="read tcpdump -nl -t output from standard input",
    )
    inputs.add_argument("--read", metavar="FILE", help="replay a saved tcpdump text capture")
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def main() -> NoReturn:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
