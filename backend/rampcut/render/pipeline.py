"""Export render pipeline.

Drives FFmpeg through four ordered phases for one export job:

1. Segment render (0-40%): one normalized intermediate per planned segment
2. Concatenation (40-60%): stream-copy join in timeline order
3. Overlay compositing (60-80%): skipped when there are no overlay clips
4. Audio mixing (80-100%): skipped when the AUDIO track is empty

All artifacts live in the job's own scratch directory, which is removed when
the run ends either way. The finished file is moved into place only after the
last phase succeeded, so a failed job never leaves a partial output behind.
"""

import asyncio
import logging
import os
import shutil
import threading
from typing import Awaitable, Callable, Mapping, Optional

from rampcut.config import get_settings
from rampcut.engine.timeline import AssetInfo, ExhaustionPolicy, OverlapPolicy, Project
from rampcut.exceptions import RenderCancelledError
from rampcut.render.audio_mixer import AudioMixer
from rampcut.render.ffmpeg import FFmpegRunner
from rampcut.render.layer_compositor import LayerCompositor
from rampcut.render.segment_planner import (
    PlannedSegment,
    VideoProgram,
    plan_video_program,
    validate_project,
)
from rampcut.render.segment_renderer import OutputProfile, build_segment_commands

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]
CancelCheck = Callable[[], bool | Awaitable[bool]]

SEGMENT_BAND = (0.0, 40.0)
CONCAT_BAND = (40.0, 60.0)
OVERLAY_BAND = (60.0, 80.0)
AUDIO_BAND = (80.0, 100.0)


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the export job id."""

    def process(self, msg, kwargs):
        return f"[job {self.extra['job_id']}] {msg}", kwargs


class ProgressTracker:
    """Monotonic progress in [0, 100], safe to update from concurrent tasks."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._value = 0.0
        self._reported = False
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        return self._value

    def update(self, value: float, stage: str) -> None:
        value = min(100.0, max(0.0, value))
        with self._lock:
            if value < self._value or (value == self._value and self._reported):
                return
            self._value = value
            self._reported = True
            if self._callback:
                self._callback(value, stage)

    def band(self, start: float, end: float, stage: str) -> Callable[[float], None]:
        """Return a reporter mapping a 0..1 fraction into ``[start, end]``."""

        def report(fraction: float) -> None:
            fraction = min(1.0, max(0.0, fraction))
            self.update(start + (end - start) * fraction, stage)

        return report


class RenderPipeline:
    """
    Render pipeline for one export job.

    Handles:
    - Segment planning and per-segment encoding (optionally in parallel)
    - Stream-copy concatenation
    - Keyframed text/image overlays
    - Audio-track mixing over the video's own sound
    """

    def __init__(
        self,
        job_id: str,
        *,
        runner: Optional[FFmpegRunner] = None,
        work_dir: Optional[str] = None,
        profile: Optional[OutputProfile] = None,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        settings = get_settings()
        self.job_id = job_id
        self.log = log or JobLogAdapter(logger, {"job_id": job_id})
        self.work_dir = work_dir or os.path.join(settings.storage_path, "temp", job_id)
        self.exports_dir = os.path.join(settings.storage_path, "exports")
        self.profile = profile or OutputProfile.from_settings()
        self.runner = runner or FFmpegRunner(log=self.log)

        self.chunk_seconds = settings.export_chunk_seconds
        self.hold_epsilon = settings.export_hold_epsilon
        self.exhaustion_policy = ExhaustionPolicy(settings.export_exhaustion_policy)
        self.overlap_policy = OverlapPolicy(settings.export_video_overlap_policy)
        self.unknown_source_duration = settings.export_unknown_source_duration
        self.segment_concurrency = max(1, settings.export_segment_concurrency)

        self.compositor = LayerCompositor(self.profile)
        self.audio_mixer = AudioMixer()
        self.progress = ProgressTracker()
        self._cancel_check: Optional[CancelCheck] = None

    def set_progress_callback(self, callback: ProgressCallback) -> None:
        """Set callback for progress updates."""
        self.progress = ProgressTracker(callback)

    async def _is_cancelled(self) -> bool:
        if self._cancel_check is None:
            return False
        result = self._cancel_check()
        if asyncio.iscoroutine(result):
            return await result
        return bool(result)

    async def _raise_if_cancelled(self) -> None:
        if await self._is_cancelled():
            raise RenderCancelledError()

    async def render(
        self,
        project: Project,
        assets: Mapping[str, AssetInfo],
        output_path: Optional[str] = None,
        cancel_check: Optional[CancelCheck] = None,
    ) -> str:
        """
        Execute the full render pipeline.

        Args:
            project: Immutable project snapshot
            assets: Asset metadata by id
            output_path: Final file location (default ``<storage>/exports/<job_id>.mp4``)
            cancel_check: Callable (sync or async) returning True to stop the run

        Returns:
            Path to the rendered file

        Raises:
            ValidationError: Before any encoder runs, for malformed timelines
            ExternalToolMissingError / ExternalToolError: Encoder failures
            RenderCancelledError: If ``cancel_check`` requested a stop
        """
        self._cancel_check = cancel_check
        final_path = output_path or os.path.join(self.exports_dir, f"{self.job_id}.mp4")

        validate_project(project, assets)
        program = plan_video_program(
            project,
            assets,
            chunk_seconds=self.chunk_seconds,
            hold_epsilon=self.hold_epsilon,
            exhaustion_policy=self.exhaustion_policy,
            overlap_policy=self.overlap_policy,
            unknown_source_duration=self.unknown_source_duration,
        )
        self.log.info(
            f"[RENDER] Starting: {len(program.segments)} segments, duration {program.duration:.3f}s"
        )

        os.makedirs(self.work_dir, exist_ok=True)
        try:
            self.progress.update(0.0, "Rendering segments")
            segment_files = await self._render_segments(program, assets)

            await self._raise_if_cancelled()
            working = await self._concatenate(segment_files, program.duration)

            await self._raise_if_cancelled()
            working = await self._composite_overlays(project, assets, working, program.duration)

            await self._raise_if_cancelled()
            working = await self._mix_audio(project, assets, working, program.duration)

            os.makedirs(os.path.dirname(final_path) or ".", exist_ok=True)
            os.replace(working, final_path)
            self.progress.update(100.0, "Complete")
            self.log.info(f"[RENDER] Complete: {final_path}")
            return final_path
        finally:
            self._cleanup()

    # =========================================================================
    # Phase 1: segments
    # =========================================================================

    def _segment_path(self, idx: int) -> str:
        return os.path.join(self.work_dir, f"seg_{idx:05d}.mov")

    async def _render_segment(
        self,
        idx: int,
        segment: PlannedSegment,
        asset: Optional[AssetInfo],
    ) -> str:
        output = self._segment_path(idx)
        kind = "filler" if segment.filler else "hold" if segment.hold else f"speed {segment.speed:.3f}"
        self.log.debug(
            f"[SEGMENT] #{idx} t={segment.timeline_start:.3f}+{segment.timeline_duration:.3f}s "
            f"src={segment.source_start:.3f}-{segment.source_end:.3f} ({kind})"
        )
        for args in build_segment_commands(segment, asset, output, self.profile):
            await self.runner.run(
                args,
                stage=f"Segment {idx}",
                cancel_check=self._cancel_check,
            )
        return output

    async def _render_segments(
        self,
        program: VideoProgram,
        assets: Mapping[str, AssetInfo],
    ) -> list[str]:
        """Render every planned segment; returns files in timeline order.

        Up to ``segment_concurrency`` encoders run at once. The first failure
        cancels (and kills) the remaining renders.
        """
        segments = program.segments
        total = len(segments)
        report = self.progress.band(*SEGMENT_BAND, "Rendering segments")
        semaphore = asyncio.Semaphore(self.segment_concurrency)
        done = 0
        done_lock = asyncio.Lock()

        async def worker(idx: int, segment: PlannedSegment) -> str:
            nonlocal done
            async with semaphore:
                await self._raise_if_cancelled()
                path = await self._render_segment(idx, segment, assets.get(segment.asset_id or ""))
            async with done_lock:
                done += 1
                report(done / total)
            return path

        tasks = [asyncio.create_task(worker(idx, seg)) for idx, seg in enumerate(segments)]
        try:
            finished, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = [t for t in finished if not t.cancelled() and t.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise failed[0].exception()

        self.log.info(f"[SEGMENT] Rendered {total} segments")
        return [task.result() for task in tasks]

    # =========================================================================
    # Phase 2: concatenation
    # =========================================================================

    async def _concatenate(self, segment_files: list[str], duration: float) -> str:
        """Join segments with the concat demuxer (video stream-copied)."""
        report = self.progress.band(*CONCAT_BAND, "Concatenating")
        concat_list_path = os.path.join(self.work_dir, "concat_list.txt")
        with open(concat_list_path, "w") as f:
            for path in segment_files:
                # Concat demuxer requires escaped single quotes
                escaped = os.path.abspath(path).replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")

        output = os.path.join(self.work_dir, "concat.mp4")
        await self.runner.run(
            [
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", concat_list_path,
                "-c:v", "copy",
                "-c:a", "aac",
                "-b:a", get_settings().render_audio_bitrate,
                "-movflags", "+faststart",
                output,
            ],
            stage="Concatenation",
            on_progress=lambda seconds: report(seconds / duration),
            cancel_check=self._cancel_check,
        )
        report(1.0)
        return output

    # =========================================================================
    # Phase 3: overlays
    # =========================================================================

    async def _composite_overlays(
        self,
        project: Project,
        assets: Mapping[str, AssetInfo],
        base_path: str,
        duration: float,
    ) -> str:
        report = self.progress.band(*OVERLAY_BAND, "Compositing overlays")
        overlays = self.compositor.collect_overlays(project, assets, self.work_dir)
        if not overlays:
            report(1.0)
            return base_path

        script_path = os.path.join(self.work_dir, "overlay_filter.txt")
        with open(script_path, "w") as f:
            f.write(self.compositor.build_filter_script(overlays))

        output = os.path.join(self.work_dir, "with_overlays.mp4")
        await self.runner.run(
            self.compositor.build_command(base_path, overlays, script_path, output, duration),
            stage="Overlay compositing",
            on_progress=lambda seconds: report(seconds / duration),
            cancel_check=self._cancel_check,
        )
        report(1.0)
        return output

    # =========================================================================
    # Phase 4: audio
    # =========================================================================

    async def _mix_audio(
        self,
        project: Project,
        assets: Mapping[str, AssetInfo],
        base_path: str,
        duration: float,
    ) -> str:
        report = self.progress.band(*AUDIO_BAND, "Mixing audio")
        clips = self.audio_mixer.collect_clips(project, assets)
        if not clips:
            return base_path

        output = os.path.join(self.work_dir, "with_audio.mp4")
        await self.runner.run(
            self.audio_mixer.build_command(base_path, clips, output, duration),
            stage="Audio mixing",
            on_progress=lambda seconds: report(seconds / duration),
            cancel_check=self._cancel_check,
        )
        return output

    def _cleanup(self) -> None:
        """Remove the job's scratch directory."""
        if os.path.isdir(self.work_dir):
            shutil.rmtree(self.work_dir, ignore_errors=True)
            self.log.debug(f"[RENDER] Removed scratch dir {self.work_dir}")

