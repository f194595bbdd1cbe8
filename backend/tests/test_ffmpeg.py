"""Tests for the asynchronous FFmpeg runner."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rampcut.exceptions import ExternalToolError, ExternalToolMissingError, RenderCancelledError
from rampcut.render.ffmpeg import FFmpegRunner, parse_progress_seconds


class FakeProcess:
    """Minimal asyncio.subprocess.Process stand-in."""

    def __init__(self, returncode: int = 0, stderr: bytes = b"", hang: bool = False):
        self.pid = 4242
        self._returncode = returncode
        self.killed = False
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self._done = asyncio.Event()
        if not hang:
            self.stderr.feed_eof()
            self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self._returncode

    def kill(self) -> None:
        self.killed = True
        self._returncode = -9
        self.stderr.feed_eof()
        self._done.set()

    def finish(self, returncode: int = 0) -> None:
        self._returncode = returncode
        self.stderr.feed_eof()
        self._done.set()


def patch_exec(**kwargs):
    return patch("rampcut.render.ffmpeg.asyncio.create_subprocess_exec", AsyncMock(**kwargs))


class TestParseProgress:
    def test_last_time_wins(self):
        text = "frame=10 time=00:00:01.00 bitrate=1k\rframe=20 time=00:01:02.50 bitrate=1k"
        assert parse_progress_seconds(text) == pytest.approx(62.5)

    def test_no_time(self):
        assert parse_progress_seconds("Input #0, mov,mp4") is None


class TestFFmpegRunner:
    """Subprocess handling, error mapping and cancellation."""

    @pytest.fixture
    def runner(self):
        return FFmpegRunner("ffmpeg-test", stderr_tail=50, poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_success(self, runner):
        """Test a clean run returns stderr and reports progress."""
        progress = MagicMock()
        proc = FakeProcess(stderr=b"frame=1 time=00:00:01.50 bitrate=1k\n")

        with patch_exec(return_value=proc) as exec_mock:
            result = await runner.run(["-i", "in.mp4", "out.mp4"], stage="Test", on_progress=progress)

        assert result.returncode == 0
        assert "time=00:00:01.50" in result.stderr
        progress.assert_called_with(1.5)
        args = exec_mock.call_args.args
        assert args[:3] == ("ffmpeg-test", "-hide_banner", "-i")

    @pytest.mark.asyncio
    async def test_missing_binary(self, runner):
        """Test an unstartable binary is an environment error, not an encode error."""
        with patch_exec(side_effect=FileNotFoundError("ffmpeg-test")):
            with pytest.raises(ExternalToolMissingError) as exc_info:
                await runner.run(["-version"])

        assert exc_info.value.tool_path == "ffmpeg-test"
        assert exc_info.value.code == "EXTERNAL_TOOL_MISSING"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, runner):
        """Test a failing encode carries the exit code and the stderr tail."""
        stderr = b"x" * 200 + b"Invalid data found when processing input"
        with patch_exec(return_value=FakeProcess(returncode=1, stderr=stderr)):
            with pytest.raises(ExternalToolError) as exc_info:
                await runner.run(["-i", "broken.mp4", "out.mp4"], stage="Segment 3")

        error = exc_info.value
        assert error.returncode == 1
        assert error.stage == "Segment 3"
        assert len(error.stderr_tail) == 50
        assert error.stderr_tail.endswith("processing input")
        assert error.message.startswith("Segment 3: FFmpeg exited with code 1")

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self, runner):
        """Test a cancel request stops a running encode."""
        proc = FakeProcess(hang=True)

        with patch_exec(return_value=proc):
            with pytest.raises(RenderCancelledError, match="stopped during Concatenation"):
                await runner.run(["out.mp4"], stage="Concatenation", cancel_check=lambda: True)

        assert proc.killed

    @pytest.mark.asyncio
    async def test_async_cancel_check(self, runner):
        """Test cancel_check may be a coroutine function."""
        proc = FakeProcess(hang=True)
        cancel_check = AsyncMock(return_value=True)

        with patch_exec(return_value=proc):
            with pytest.raises(RenderCancelledError):
                await runner.run(["out.mp4"], cancel_check=cancel_check)

        cancel_check.assert_awaited()
        assert proc.killed

    @pytest.mark.asyncio
    async def test_progress_token_split_across_reads(self, runner):
        """Test a time= token arriving in two pieces is still reported."""
        proc = FakeProcess(hang=True)
        progress = MagicMock()

        with patch_exec(return_value=proc):
            task = asyncio.create_task(runner.run(["out.mp4"], on_progress=progress))
            proc.stderr.feed_data(b"frame=5 time=00:00:0")
            await asyncio.sleep(0.02)
            proc.stderr.feed_data(b"2.25 bitrate=1k\r")
            await asyncio.sleep(0.02)
            proc.finish()
            await task

        progress.assert_called_once_with(2.25)

    @pytest.mark.asyncio
    async def test_stderr_kept_as_bounded_tail(self, runner):
        proc = FakeProcess(stderr=b"frame=1 fps=30\n" * 2000 + b"done\n")

        with patch_exec(return_value=proc):
            result = await runner.run(["out.mp4"])

        assert len(result.stderr) == 50
        assert result.stderr.endswith("done\n")
