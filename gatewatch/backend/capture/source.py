"""
capture/source.py

Line sources: where the pipeline gets its text lines.

Every source honours the same small async contract:

    await source.start()
    line = await source.readline()   # str, or None at end of stream
    await source.close()

readline() is the only place the pipeline ever suspends, so cancelling the
pipeline task (operator interrupt) always lands here and never in the
middle of a merge.

Implementations:
  - TcpdumpSource      spawns tcpdump as an asyncio subprocess
  - PipeLineSource     reads a pipe (stdin) through the event loop
  - StreamLineSource   reads an already-open text stream (a saved
                       capture) on a worker thread
  - IterableLineSource canned lines, for tests and replays

Failures of the underlying source (binary missing, permission denied,
capture exiting non-zero, broken pipe) raise CaptureError. A single line
longer than the reader limit is skipped, not fatal.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import sys
from typing import IO, Iterable, Protocol, Sequence

logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 5
_TERMINATE_TIMEOUT_SECONDS = 5.0


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    """readline() that drops over-long lines instead of failing the stream."""
    while True:
        try:
            return await reader.readline()
        except ValueError as exc:
            # the reader has already discarded the oversized chunk
            logger.debug("Skipping over-long input line: %s", exc)


class CaptureError(RuntimeError):
    """The line source failed; the capture cannot continue."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr


class LineSource(Protocol):
    async def start(self) -> None: ...

    async def readline(self) -> str | None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# tcpdump subprocess
# ---------------------------------------------------------------------------

class TcpdumpSource:
    """
    Runs the capture command and yields its stdout line by line.

    The child gets its own process group in the terminal's session, so a
    terminal Ctrl+C reaches only this process; the child is terminated by
    close() once the final report has been written.

    A child that needs sudo cannot prompt from a background process group,
    so when the command starts with sudo and stdin is a terminal, start()
    first runs ``sudo -v`` in the foreground to cache the credential.

    Args:
        command: Full argv, see capture/filter.py build_tcpdump_command().
    """

    def __init__(self, command: Sequence[str]) -> None:
        self._command = list(command)
        self._proc: asyncio.subprocess.Process | None = None
        self._closing = False

    @property
    def needs_sudo_prompt(self) -> bool:
        if not self._command or os.path.basename(self._command[0]) != "sudo":
            return False
        return os.geteuid() != 0 and sys.stdin.isatty()

    async def start(self) -> None:
        if self._proc is not None:
            logger.warning("TcpdumpSource.start() called but already running")
            return

        if self.needs_sudo_prompt:
            await self._validate_sudo()

        logger.info("Starting capture — %s", shlex.join(self._command))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                process_group=0,
            )
        except OSError as exc:
            raise CaptureError(
                f"could not start capture process: {exc}",
                command=self._command,
            ) from exc
        logger.info("Capture process started — pid=%d", self._proc.pid)

    async def _validate_sudo(self) -> None:
        sudo = self._command[0]
        logger.info("Validating sudo credentials before starting capture")
        try:
            proc = await asyncio.create_subprocess_exec(sudo, "-v")
        except OSError as exc:
            raise CaptureError(f"could not run sudo: {exc}", command=self._command) from exc
        returncode = await proc.wait()
        if returncode != 0:
            raise CaptureError(
                f"sudo authentication failed (status {returncode})",
                command=self._command,
                returncode=returncode,
            )

    async def readline(self) -> str | None:
        if self._proc is None or self._proc.stdout is None:
            raise CaptureError("capture process not started", command=self._command)

        try:
            data = await _read_line(self._proc.stdout)
        except OSError as exc:
            raise CaptureError(
                f"reading capture output failed: {exc}",
                command=self._command,
            ) from exc

        if data:
            return data.decode("utf-8", errors="replace")

        returncode = await self._proc.wait()
        if returncode != 0 and not self._closing:
            stderr = await self._stderr_tail()
            raise CaptureError(
                f"capture process exited with status {returncode}",
                command=self._command,
                returncode=returncode,
                stderr=stderr,
            )
        logger.info("Capture output ended — exit status %d", returncode)
        return None

    async def close(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        self._closing = True
        logger.info("Stopping capture process — pid=%d", proc.pid)
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Capture process ignored SIGTERM — killing pid=%d", proc.pid)
            proc.kill()
            await proc.wait()

    async def _stderr_tail(self) -> str:
        if self._proc is None or self._proc.stderr is None:
            return ""
        raw = await self._proc.stderr.read()
        lines = raw.decode("utf-8", errors="replace").strip().splitlines()
        return "\n".join(lines[-_STDERR_TAIL_LINES:])

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def __repr__(self) -> str:  # pragma: no cover
        return f"TcpdumpSource(command={shlex.join(self._command)!r}, running={self.is_running})"


# ---------------------------------------------------------------------------
# Pipe (stdin fed by `tcpdump ... | gatewatch --stdin`)
# ---------------------------------------------------------------------------

class PipeLineSource:
    """
    Reads lines from a pipe through the event loop's own pipe transport.

    No worker thread is involved, so cancellation never leaves a thread
    blocked on the pipe. Regular files are not pipes; use StreamLineSource.

    Args:
        pipe: File object wrapping the read end of a pipe (e.g. ``sys.stdin``).
    """

    def __init__(self, pipe: IO[str] | IO[bytes]) -> None:
        self._pipe = pipe
        self._reader: asyncio.StreamReader | None = None
        self._transport: asyncio.BaseTransport | None = None

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        try:
            self._transport, _ = await loop.connect_read_pipe(lambda: protocol, self._pipe)
        except (OSError, ValueError) as exc:
            raise CaptureError(f"cannot read from pipe: {exc}") from exc
        self._reader = reader
        logger.info("Reading capture lines from pipe %s", getattr(self._pipe, "name", "<pipe>"))

    async def readline(self) -> str | None:
        if self._reader is None:
            raise CaptureError("pipe source not started")
        try:
            data = await _read_line(self._reader)
        except OSError as exc:
            raise CaptureError(f"reading pipe failed: {exc}") from exc
        return data.decode("utf-8", errors="replace") if data else None

    async def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


# ---------------------------------------------------------------------------
# Already-open text stream
# ---------------------------------------------------------------------------

class StreamLineSource:
    """
    Reads lines from a text stream such as ``sys.stdin`` or an open file.

    The blocking readline() runs on a worker thread; cancelling the awaiting
    coroutine returns control to the event loop immediately.

    Args:
        stream:       Any object with a text-mode ``readline()``.
        close_stream: Close the stream in close() (for files we opened).
    """

    def __init__(self, stream: IO[str], close_stream: bool = False) -> None:
        self._stream = stream
        self._close_stream = close_stream

    async def start(self) -> None:
        logger.info("Reading capture lines from %s", getattr(self._stream, "name", "<stream>"))

    async def readline(self) -> str | None:
        try:
            line = await asyncio.to_thread(self._stream.readline)
        except (OSError, ValueError) as exc:
            raise CaptureError(f"reading input stream failed: {exc}") from exc
        return line or None

    async def close(self) -> None:
        if self._close_stream:
            self._stream.close()


# ---------------------------------------------------------------------------
# Canned lines
# ---------------------------------------------------------------------------

class IterableLineSource:
    """Serves a fixed sequence of lines, then end of stream."""

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = iter(lines)
        self.closed = False

    async def start(self) -> None:
        return None

    async def readline(self) -> str | None:
        await asyncio.sleep(0)
        return next(self._lines, None)

    async def close(self) -> None:
        self.closed = True
