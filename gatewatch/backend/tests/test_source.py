"""
tests/test_source.py

Tests for capture/source.py.

TcpdumpSource is exercised against a FakeProcess patched in for
asyncio.create_subprocess_exec — no tcpdump binary or privileges needed.
PipeLineSource reads a real os.pipe().
"""

from __future__ import annotations

import asyncio
import io
import os
import threading
from unittest.mock import AsyncMock, patch

import pytest

from gatewatch.backend.capture.source import (
    CaptureError,
    IterableLineSource,
    PipeLineSource,
    StreamLineSource,
    TcpdumpSource,
)

DNS_LINE_A = b"IP 10.0.0.5.40000 > 10.0.0.1.53: 1+ A? a.com. (30)\n"
DNS_LINE_B = b"IP 10.0.0.6.40001 > 10.0.0.1.53: 2+ A? b.net. (30)\n"
OVERLONG_LINE = b"x" * 70_000 + b"\n"

COMMAND = ["sudo", "tcpdump", "-i", "lo", "-nl", "-t", "port 53"]
SPAWN = "gatewatch.backend.capture.source.asyncio.create_subprocess_exec"
GETEUID = "gatewatch.backend.capture.source.os.geteuid"


class _Terminal(io.StringIO):
    def isatty(self):
        return True


@pytest.fixture(autouse=True)
def _stdin_not_a_terminal(monkeypatch):
    """No sudo prompt unless a test asks for a terminal."""
    monkeypatch.setattr("gatewatch.backend.capture.source.sys.stdin", io.StringIO())


# ---------------------------------------------------------------------------
# Fake subprocess
# ---------------------------------------------------------------------------

def _reader(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class FakeProcess:
    """Mimics asyncio.subprocess.Process for a capture that prints then exits."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", exit_status: int = 0):
        self.stdout = _reader(stdout)
        self.stderr = _reader(stderr)
        self.pid = 4242
        self.returncode = None
        self._exit_status = exit_status
        self.terminated = False
        self.killed = False

    async def wait(self):
        if self.returncode is None:
            self.returncode = self._exit_status
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9


# ---------------------------------------------------------------------------
# TcpdumpSource
# ---------------------------------------------------------------------------

class TestTcpdumpSource:

    @pytest.mark.asyncio
    async def test_spawns_command_in_own_process_group(self):
        spawn = AsyncMock(return_value=FakeProcess())
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, spawn):
            await source.start()

        args, kwargs = spawn.call_args
        assert list(args) == COMMAND
        assert kwargs["process_group"] == 0
        assert "start_new_session" not in kwargs
        assert kwargs["stdout"] == asyncio.subprocess.PIPE

    @pytest.mark.asyncio
    async def test_lines_then_clean_end_of_stream(self):
        proc = FakeProcess(stdout=b"IP a > b: x\nIP c > d: y\n", exit_status=0)
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, AsyncMock(return_value=proc)):
            await source.start()

        assert await source.readline() == "IP a > b: x\n"
        assert await source.readline() == "IP c > d: y\n"
        assert await source.readline() is None

    @pytest.mark.asyncio
    async def test_undecodable_bytes_replaced(self):
        proc = FakeProcess(stdout=b"IP \xff > b: x\n")
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, AsyncMock(return_value=proc)):
            await source.start()
        assert "�" in await source.readline()

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_stderr_tail(self):
        stderr = b"line1\nline2\ntcpdump: eth9: You don't have permission to capture on that device\n"
        proc = FakeProcess(stderr=stderr, exit_status=1)
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, AsyncMock(return_value=proc)):
            await source.start()

        with pytest.raises(CaptureError) as info:
            await source.readline()

        assert info.value.returncode == 1
        assert "permission" in info.value.stderr
        assert info.value.command == COMMAND

    @pytest.mark.asyncio
    async def test_missing_binary_raises_capture_error(self):
        spawn = AsyncMock(side_effect=FileNotFoundError("No such file or directory: 'tcpdump'"))
        source = TcpdumpSource(["tcpdump", "-i", "lo"])
        with patch(SPAWN, spawn):
            with pytest.raises(CaptureError, match="could not start"):
                await source.start()

    @pytest.mark.asyncio
    async def test_readline_before_start(self):
        with pytest.raises(CaptureError):
            await TcpdumpSource(COMMAND).readline()

    @pytest.mark.asyncio
    async def test_close_terminates_running_process(self):
        proc = FakeProcess(stdout=b"IP a > b: x\n")
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, AsyncMock(return_value=proc)):
            await source.start()
        assert source.is_running

        await source.close()

        assert proc.terminated
        assert not source.is_running

    @pytest.mark.asyncio
    async def test_close_after_exit_is_noop(self):
        proc = FakeProcess()
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, AsyncMock(return_value=proc)):
            await source.start()
        assert await source.readline() is None

        await source.close()

        assert not proc.terminated

    @pytest.mark.asyncio
    async def test_double_start_spawns_once(self):
        spawn = AsyncMock(return_value=FakeProcess())
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, spawn):
            await source.start()
            await source.start()
        assert spawn.await_count == 1

    @pytest.mark.asyncio
    async def test_overlong_line_skipped(self):
        proc = FakeProcess(stdout=DNS_LINE_A + OVERLONG_LINE + DNS_LINE_B)
        source = TcpdumpSource(COMMAND)
        with patch(SPAWN, AsyncMock(return_value=proc)):
            await source.start()

        assert await source.readline() == DNS_LINE_A.decode()
        assert await source.readline() == DNS_LINE_B.decode()
        assert await source.readline() is None


class TestSudoValidation:

    @pytest.mark.asyncio
    async def test_sudo_validated_in_foreground_first(self, monkeypatch):
        monkeypatch.setattr("gatewatch.backend.capture.source.sys.stdin", _Terminal())
        spawn = AsyncMock(side_effect=[FakeProcess(), FakeProcess()])
        source = TcpdumpSource(COMMAND)
        with patch(GETEUID, return_value=1000), patch(SPAWN, spawn):
            await source.start()

        validate, capture = spawn.await_args_list
        assert validate.args == ("sudo", "-v")
        assert "stdout" not in validate.kwargs
        assert list(capture.args) == COMMAND

    @pytest.mark.asyncio
    async def test_failed_validation_raises_capture_error(self, monkeypatch):
        monkeypatch.setattr("gatewatch.backend.capture.source.sys.stdin", _Terminal())
        spawn = AsyncMock(side_effect=[FakeProcess(exit_status=1)])
        source = TcpdumpSource(COMMAND)
        with patch(GETEUID, return_value=1000), patch(SPAWN, spawn):
            with pytest.raises(CaptureError, match="sudo authentication failed") as info:
                await source.start()

        assert spawn.await_count == 1
        assert info.value.command == COMMAND

    @pytest.mark.asyncio
    async def test_no_validation_as_root(self, monkeypatch):
        monkeypatch.setattr("gatewatch.backend.capture.source.sys.stdin", _Terminal())
        spawn = AsyncMock(return_value=FakeProcess())
        with patch(GETEUID, return_value=0), patch(SPAWN, spawn):
            await TcpdumpSource(COMMAND).start()
        assert spawn.await_count == 1

    @pytest.mark.asyncio
    async def test_no_validation_without_terminal(self):
        spawn = AsyncMock(return_value=FakeProcess())
        with patch(GETEUID, return_value=1000), patch(SPAWN, spawn):
            await TcpdumpSource(COMMAND).start()
        assert spawn.await_count == 1

    @pytest.mark.asyncio
    async def test_no_validation_without_sudo(self, monkeypatch):
        monkeypatch.setattr("gatewatch.backend.capture.source.sys.stdin", _Terminal())
        spawn = AsyncMock(return_value=FakeProcess())
        with patch(GETEUID, return_value=1000), patch(SPAWN, spawn):
            await TcpdumpSource(["tcpdump", "-i", "lo"]).start()
        assert spawn.await_count == 1


# ---------------------------------------------------------------------------
# PipeLineSource
# ---------------------------------------------------------------------------

class TestPipeLineSource:

    @pytest.mark.asyncio
    async def test_reads_pipe_until_writer_closes(self):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, b"IP a > b: x\nIP c > d: y\n")
        os.close(write_fd)

        with os.fdopen(read_fd, "rb") as pipe:
            source = PipeLineSource(pipe)
            await source.start()
            try:
                assert await source.readline() == "IP a > b: x\n"
                assert await source.readline() == "IP c > d: y\n"
                assert await source.readline() is None
            finally:
                await source.close()

    @pytest.mark.asyncio
    async def test_readline_before_start(self):
        with pytest.raises(CaptureError):
            await PipeLineSource(io.BytesIO()).readline()

    @pytest.mark.asyncio
    async def test_overlong_line_skipped(self):
        read_fd, write_fd = os.pipe()

        def _write():
            # more than the pipe buffer holds, so write from a thread
            with os.fdopen(write_fd, "wb") as pipe:
                pipe.write(DNS_LINE_A + OVERLONG_LINE + DNS_LINE_B)

        writer = threading.Thread(target=_write)
        writer.start()
        lines = []
        with os.fdopen(read_fd, "rb") as pipe:
            source = PipeLineSource(pipe)
            await source.start()
            try:
                while (line := await source.readline()) is not None:
                    lines.append(line)
            finally:
                await source.close()
        writer.join()

        assert lines[0] == DNS_LINE_A.decode()
        assert lines[-1] == DNS_LINE_B.decode()
        assert all(len(line) < 65536 for line in lines)


# ---------------------------------------------------------------------------
# StreamLineSource / IterableLineSource
# ---------------------------------------------------------------------------

class TestStreamLineSource:

    @pytest.mark.asyncio
    async def test_reads_until_eof(self):
        source = StreamLineSource(io.StringIO("one\ntwo\n"))
        await source.start()
        assert await source.readline() == "one\n"
        assert await source.readline() == "two\n"
        assert await source.readline() is None

    @pytest.mark.asyncio
    async def test_close_stream_when_owned(self):
        stream = io.StringIO("x\n")
        await StreamLineSource(stream, close_stream=True).close()
        assert stream.closed

    @pytest.mark.asyncio
    async def test_borrowed_stream_left_open(self):
        stream = io.StringIO("x\n")
        await StreamLineSource(stream).close()
        assert not stream.closed

    @pytest.mark.asyncio
    async def test_closed_stream_raises_capture_error(self):
        stream = io.StringIO("x\n")
        stream.close()
        with pytest.raises(CaptureError):
            await StreamLineSource(stream).readline()


class TestIterableLineSource:

    @pytest.mark.asyncio
    async def test_serves_lines_then_none(self):
        source = IterableLineSource(["a\n", "b\n"])
        await source.start()
        assert [await source.readline() for _ in range(3)] == ["a\n", "b\n", None]
        await source.close()
        assert source.closed
