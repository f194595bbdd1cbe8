"""
Tests for the export render pipeline.

The encoder is replaced by ``fake_runner`` (see conftest), so these tests
check orchestration: phase order, progress, cleanup and cancellation.
"""

import logging
import os
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from rampcut.config import get_settings
from rampcut.engine.timeline import AssetInfo, Clip, SpeedKeyframe, TrackKind
from rampcut.exceptions import ExternalToolError, RenderCancelledError, ValidationError
from rampcut.render.pipeline import JobLogAdapter, ProgressTracker, RenderPipeline


def stages(runner) -> list[str]:
    return [call.kwargs["stage"] for call in runner.run.call_args_list]


@pytest.fixture
def project(project_factory):
    return project_factory(
        {
            TrackKind.VIDEO_A: [
                Clip(
                    id="v1",
                    start_time=0.0,
                    duration=2.0,
                    asset_id="asset-video",
                    speed_keyframes=(SpeedKeyframe(0, 1), SpeedKeyframe(1, 0), SpeedKeyframe(2, 0)),
                )
            ],
            TrackKind.OVERLAY_TEXT: [
                Clip(id="title", start_time=0.5, duration=1.0, properties={"text": "Hi"}),
            ],
            TrackKind.AUDIO: [
                Clip(id="music", start_time=0.0, duration=2.0, asset_id="asset-music"),
            ],
        }
    )


@pytest.fixture
def assets(video_asset_info, temp_output_dir: Path) -> dict[str, AssetInfo]:
    return {
        "asset-video": video_asset_info,
        "asset-music": AssetInfo(
            id="asset-music",
            path=str(temp_output_dir / "music.mp3"),
            duration=120.0,
            has_audio=True,
            kind="audio",
        ),
    }


@pytest.fixture
def pipeline(fake_runner, temp_output_dir: Path) -> RenderPipeline:
    return RenderPipeline(
        "job-1",
        runner=fake_runner,
        work_dir=str(temp_output_dir / "work"),
    )


class TestProgressTracker:
    def test_monotonic_and_clamped(self):
        """Test progress never moves backwards and stays within 0..100."""
        seen = []
        tracker = ProgressTracker(lambda value, stage: seen.append(value))

        tracker.update(10, "a")
        tracker.update(5, "b")
        tracker.update(10, "c")
        tracker.update(250, "d")

        assert seen == [10, 100]
        assert tracker.value == 100

    def test_band_mapping(self):
        seen = []
        tracker = ProgressTracker(lambda value, stage: seen.append((value, stage)))
        report = tracker.band(40, 60, "Concatenating")

        report(0.5)
        report(2.0)

        assert seen == [(50, "Concatenating"), (60, "Concatenating")]


class TestRenderPipeline:
    """Full four-phase runs against the fake encoder."""

    @pytest.mark.asyncio
    async def test_phase_order_and_output(self, pipeline, fake_runner, project, assets, temp_output_dir: Path):
        output = temp_output_dir / "final.mp4"

        result = await pipeline.render(project, assets, output_path=str(output))

        assert result == str(output)
        assert output.exists()
        run_stages = stages(fake_runner)
        assert run_stages[-3:] == ["Concatenation", "Overlay compositing", "Audio mixing"]
        assert all(stage.startswith("Segment ") for stage in run_stages[:-3])
        # Ramp chunks plus one hold (grab + loop)
        assert run_stages.count("Segment 2") == 2
        assert not os.path.exists(pipeline.work_dir)

    @pytest.mark.asyncio
    async def test_concat_list_in_timeline_order(self, pipeline, fake_runner, project, assets, temp_output_dir: Path):
        listed = []

        async def capture(args, **kwargs):
            if kwargs["stage"] == "Concatenation":
                with open(args[args.index("-i") + 1]) as f:
                    listed.extend(line.strip() for line in f)
            Path(args[-1]).write_bytes(b"\x00")

        fake_runner.run.side_effect = capture

        await pipeline.render(project, assets, output_path=str(temp_output_dir / "out.mp4"))

        names = [os.path.basename(line.split("'")[1]) for line in listed]
        assert names == sorted(names)
        assert names[0] == "seg_00000.mov"

    @pytest.mark.asyncio
    async def test_default_output_location(self, pipeline, project, assets, storage_dir: Path):
        result = await pipeline.render(project, assets)

        assert result == os.path.join(str(storage_dir), "exports", "job-1.mp4")
        assert os.path.isfile(result)

    @pytest.mark.asyncio
    async def test_progress_reaches_100(self, pipeline, project, assets, temp_output_dir: Path):
        updates = []
        pipeline.set_progress_callback(lambda value, stage: updates.append((value, stage)))

        await pipeline.render(project, assets, output_path=str(temp_output_dir / "out.mp4"))

        values = [value for value, _ in updates]
        assert values == sorted(values)
        assert updates[-1] == (100.0, "Complete")
        assert {"Rendering segments", "Concatenating", "Compositing overlays"} <= {
            stage for _, stage in updates
        }

    @pytest.mark.asyncio
    async def test_skips_empty_phases(self, pipeline, fake_runner, project_factory, assets, temp_output_dir: Path):
        """Test no overlay or audio pass runs when those tracks are empty."""
        project = project_factory(
            {TrackKind.VIDEO_A: [Clip(id="v1", start_time=0.0, duration=1.0, asset_id="asset-video")]}
        )

        await pipeline.render(project, assets, output_path=str(temp_output_dir / "out.mp4"))

        assert stages(fake_runner) == ["Segment 0", "Concatenation"]

    @pytest.mark.asyncio
    async def test_validation_runs_before_encoder(self, pipeline, fake_runner, project_factory, assets):
        project = project_factory(
            {TrackKind.VIDEO_A: [Clip(id="bad", start_time=0.0, duration=-1.0, asset_id="asset-video")]}
        )

        with pytest.raises(ValidationError):
            await pipeline.render(project, assets)

        fake_runner.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_leaves_no_output(self, pipeline, fake_runner, project, assets, temp_output_dir: Path):
        """Test a failing phase removes scratch files and never writes the final file."""
        output = temp_output_dir / "out.mp4"

        async def fail_on_overlay(args, **kwargs):
            if kwargs["stage"] == "Overlay compositing":
                raise ExternalToolError(1, "boom", stage=kwargs["stage"])
            Path(args[-1]).write_bytes(b"\x00")

        fake_runner.run.side_effect = fail_on_overlay

        with pytest.raises(ExternalToolError, match="boom"):
            await pipeline.render(project, assets, output_path=str(output))

        assert not output.exists()
        assert not os.path.exists(pipeline.work_dir)
        assert "Audio mixing" not in stages(fake_runner)

    @pytest.mark.asyncio
    async def test_parallel_segment_failure(self, monkeypatch, fake_runner, project, assets, temp_output_dir: Path):
        """Test the first failing segment aborts the run with concurrency > 1."""
        monkeypatch.setenv("EXPORT_SEGMENT_CONCURRENCY", "3")
        get_settings.cache_clear()
        pipeline = RenderPipeline("job-2", runner=fake_runner, work_dir=str(temp_output_dir / "work"))

        async def fail_segment_1(args, **kwargs):
            if kwargs["stage"] == "Segment 1":
                raise ExternalToolError(1, "bad frame", stage="Segment 1")
            Path(args[-1]).write_bytes(b"\x00")

        fake_runner.run.side_effect = fail_segment_1

        with pytest.raises(ExternalToolError, match="bad frame"):
            await pipeline.render(project, assets, output_path=str(temp_output_dir / "out.mp4"))

        assert pipeline.segment_concurrency == 3
        assert "Concatenation" not in stages(fake_runner)

    @pytest.mark.asyncio
    async def test_cancel_before_segments(self, pipeline, fake_runner, project, assets, temp_output_dir: Path):
        with pytest.raises(RenderCancelledError, match="Cancelled by request"):
            await pipeline.render(
                project, assets, output_path=str(temp_output_dir / "out.mp4"), cancel_check=lambda: True
            )

        fake_runner.run.assert_not_called()
        assert not os.path.exists(pipeline.work_dir)

    @pytest.mark.asyncio
    async def test_cancel_between_phases(self, pipeline, fake_runner, project, assets, temp_output_dir: Path):
        """Test a cancel raised after phase 1 stops before concatenation."""
        cancel = AsyncMock(return_value=False)

        async def cancel_after_segments(args, **kwargs):
            Path(args[-1]).write_bytes(b"\x00")
            cancel.return_value = True

        fake_runner.run.side_effect = cancel_after_segments

        with pytest.raises(RenderCancelledError):
            await pipeline.render(
                project, assets, output_path=str(temp_output_dir / "out.mp4"), cancel_check=cancel
            )

        assert "Concatenation" not in stages(fake_runner)


class TestJobLogAdapter:
    def test_prefixes_job_id(self, caplog):
        log = JobLogAdapter(logging.getLogger("rampcut.test"), {"job_id": "abc"})

        with caplog.at_level(logging.INFO, logger="rampcut.test"):
            log.info("[RENDER] Starting")

        assert "[job abc] [RENDER] Starting" in caplog.text
