"""Asynchronous FFmpeg invocation.

The encoder is treated as an opaque subprocess: callers hand over an argument
list and get back the exit status and diagnostic output. A binary that cannot
be started is reported as ``ExternalToolMissingError`` (environment problem);
a non-zero exit as ``ExternalToolError`` (content/encoding problem).
"""

import asyncio
import codecs
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from rampcut.config import get_settings
from rampcut.exceptions import ExternalToolError, ExternalToolMissingError, RenderCancelledError

logger = logging.getLogger(__name__)

# FFmpeg prints "time=00:01:02.50" on its stats line while encoding
TIME_PATTERN = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
# Stats lines end in "\r", log lines in "\n"
LINE_BREAK = re.compile(r"\r\n|\r|\n")

CancelCheck = Callable[[], bool | Awaitable[bool]]
ProgressHook = Callable[[float], None]


@dataclass
class FFmpegResult:
    returncode: int
    # Last ``stderr_tail`` characters only
    stderr: str


def parse_progress_seconds(text: str) -> float | None:
    """Return the last ``time=`` position (in seconds) found in a stderr chunk."""
    matches = TIME_PATTERN.findall(text)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


async def _is_cancelled(cancel_check: CancelCheck | None) -> bool:
    if cancel_check is None:
        return False
    result = cancel_check()
    if asyncio.iscoroutine(result):
        return await result
    return bool(result)


class FFmpegRunner:
    """Runs FFmpeg with progress sniffing and cooperative cancellation."""

    def __init__(
        self,
        ffmpeg_path: str | None = None,
        *,
        stderr_tail: int | None = None,
        poll_interval: float = 0.5,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.stderr_tail = stderr_tail or settings.ffmpeg_stderr_tail
        self.poll_interval = poll_interval
        self.log = log or logger

    async def run(
        self,
        args: Sequence[str],
        *,
        stage: str | None = None,
        on_progress: ProgressHook | None = None,
        cancel_check: CancelCheck | None = None,
    ) -> FFmpegResult:
        """Run ``ffmpeg <args>`` to completion.

        Args:
            args: Arguments after the binary name
            stage: Human-readable label used in logs and error messages
            on_progress: Called with the encoder's output position in seconds
            cancel_check: Polled while the process runs; True kills it

        Raises:
            ExternalToolMissingError: If the binary cannot be started
            ExternalToolError: If FFmpeg exits non-zero
            RenderCancelledError: If ``cancel_check`` reported cancellation
        """
        cmd = [self.ffmpeg_path, "-hide_banner", *args]
        self.log.debug(f"[FFMPEG] {stage or 'run'}: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self.log.error(f"[FFMPEG] Binary not found: {self.ffmpeg_path}")
            raise ExternalToolMissingError(self.ffmpeg_path) from e

        tail: deque[str] = deque(maxlen=self.stderr_tail)
        reader = asyncio.create_task(self._drain_stderr(proc, tail, on_progress))
        waiter = asyncio.create_task(proc.wait())

        try:
            while not waiter.done():
                await asyncio.wait({waiter}, timeout=self.poll_interval)
                if not waiter.done() and await _is_cancelled(cancel_check):
                    raise RenderCancelledError(f"stopped during {stage or 'encoding'}")
        except BaseException:
            await self._kill(proc, waiter, reader)
            raise

        await reader
        returncode = waiter.result()
        stderr = "".join(tail)

        if returncode != 0:
            self.log.error(f"[FFMPEG] {stage or 'run'} failed with code {returncode}: {stderr}")
            raise ExternalToolError(returncode, stderr, stage=stage)

        return FFmpegResult(returncode=returncode, stderr=stderr)

    async def _drain_stderr(
        self,
        proc: asyncio.subprocess.Process,
        tail: deque[str],
        on_progress: ProgressHook | None,
    ) -> None:
        """Keep a bounded stderr tail and sniff ``time=`` from complete lines."""
        assert proc.stderr is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            data = await proc.stderr.read(4096)
            text = decoder.decode(data, final=not data)
            tail.extend(text)
            pending += text
            *lines, pending = LINE_BREAK.split(pending)
            if not data:
                lines.append(pending)
            if on_progress is not None and lines:
                seconds = parse_progress_seconds("\n".join(lines))
                if seconds is not None:
                    on_progress(seconds)
            if not data:
                return

    async def _kill(
        self,
        proc: asyncio.subprocess.Process,
        waiter: asyncio.Task,
        reader: asyncio.Task,
    ) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass  # already exited
        await asyncio.gather(waiter, return_exceptions=True)
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)
        self.log.warning(f"[FFMPEG] Killed pid {proc.pid}")
