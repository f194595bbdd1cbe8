"""FFmpeg commands for phase 1: one normalized intermediate file per segment.

Every intermediate shares one profile (codec, pixel format, frame size, frame
rate, PCM audio layout) so the concatenation phase can join them without
re-encoding video. Every intermediate carries an audio stream, synthesized as
silence where the source has none or the clip is muted.
"""

import os
from dataclasses import dataclass

from rampcut.config import get_settings
from rampcut.engine.timeline import AssetInfo
from rampcut.render.expressions import number
from rampcut.render.segment_planner import PlannedSegment

# atempo accepts 0.5..2.0 per stage with the best quality
ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0


@dataclass(frozen=True)
class OutputProfile:
    width: int = 1280
    height: int = 720
    fps: int = 30
    preset: str = "veryfast"
    crf: int = 20
    sample_rate: int = 44100

    @classmethod
    def from_settings(cls) -> "OutputProfile":
        settings = get_settings()
        return cls(
            width=settings.render_output_width,
            height=settings.render_output_height,
            fps=settings.render_fps,
            preset=settings.render_video_preset,
            crf=settings.render_crf,
            sample_rate=settings.render_audio_sample_rate,
        )

    @property
    def silence_source(self) -> str:
        return f"anullsrc=r={self.sample_rate}:cl=stereo"

    def normalize_video(self) -> str:
        """Letterbox to the output size at the output frame rate."""
        w, h = self.width, self.height
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color=black,"
            f"setsar=1,fps={self.fps},format=yuv420p"
        )

    def normalize_audio(self) -> str:
        return f"aresample={self.sample_rate},aformat=sample_fmts=s16:channel_layouts=stereo"

    def codec_args(self) -> list[str]:
        return [
            "-c:v", "libx264",
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-pix_fmt", "yuv420p",
            "-r", str(self.fps),
            "-c:a", "pcm_s16le",
            "-ar", str(self.sample_rate),
            "-ac", "2",
        ]


def atempo_chain(speed: float) -> list[str]:
    """Split a tempo factor into atempo stages that each stay within 0.5..2.0."""
    filters: list[str] = []
    remaining = speed
    while remaining > ATEMPO_MAX:
        filters.append(f"atempo={ATEMPO_MAX}")
        remaining /= ATEMPO_MAX
    while remaining < ATEMPO_MIN:
        filters.append(f"atempo={ATEMPO_MIN}")
        remaining /= ATEMPO_MIN
    if abs(remaining - 1.0) > 1e-6:
        filters.append(f"atempo={remaining:.6f}")
    return filters


def build_range_command(
    asset: AssetInfo,
    segment: PlannedSegment,
    output_path: str,
    profile: OutputProfile,
) -> list[str]:
    """Extract ``[source_start, source_end)`` and retime it to the segment's speed."""
    target = number(segment.timeline_duration)
    speed = segment.speed
    # Clone the last frame briefly so rounding never leaves the segment short
    video_chain = (
        f"setpts=(PTS-STARTPTS)/{speed:.6f},"
        f"{profile.normalize_video()},"
        f"tpad=stop_mode=clone:stop_duration={number(2.0 / profile.fps)}"
    )

    args = [
        "-y",
        "-ss", number(segment.source_start),
        "-t", number(segment.source_duration),
        "-i", asset.path,
    ]

    if asset.has_audio and not segment.muted:
        audio_chain = ",".join(
            ["asetpts=PTS-STARTPTS", *atempo_chain(speed), profile.normalize_audio(), "apad", f"atrim=duration={target}"]
        )
        filter_complex = f"[0:v]{video_chain}[v];[0:a]{audio_chain}[a]"
    else:
        args += ["-f", "lavfi", "-t", target, "-i", profile.silence_source]
        filter_complex = (
            f"[0:v]{video_chain}[v];"
            f"[1:a]{profile.normalize_audio()},atrim=duration={target}[a]"
        )

    return args + [
        "-filter_complex", filter_complex,
        "-map", "[v]",
        "-map", "[a]",
        *profile.codec_args(),
        "-t", target,
        output_path,
    ]


def build_hold_commands(
    asset: AssetInfo,
    segment: PlannedSegment,
    output_path: str,
    profile: OutputProfile,
) -> list[list[str]]:
    """Grab one still frame at ``source_start`` and loop it with silence."""
    target = number(segment.timeline_duration)
    frame_path = os.path.splitext(output_path)[0] + ".jpg"
    grab = [
        "-y",
        "-ss", number(segment.source_start),
        "-i", asset.path,
        "-frames:v", "1",
        "-q:v", "2",
        frame_path,
    ]
    loop = [
        "-y",
        "-loop", "1",
        "-framerate", str(profile.fps),
        "-t", target,
        "-i", frame_path,
        "-f", "lavfi",
        "-t", target,
        "-i", profile.silence_source,
        "-filter_complex",
        f"[0:v]{profile.normalize_video()}[v];[1:a]{profile.normalize_audio()},atrim=duration={target}[a]",
        "-map", "[v]",
        "-map", "[a]",
        *profile.codec_args(),
        "-t", target,
        output_path,
    ]
    return [grab, loop]


def build_filler_command(
    segment: PlannedSegment,
    output_path: str,
    profile: OutputProfile,
) -> list[str]:
    """Black frames with silence for timeline stretches without video."""
    target = number(segment.timeline_duration)
    return [
        "-y",
        "-f", "lavfi",
        "-i", f"color=c=black:s={profile.width}x{profile.height}:r={profile.fps}:d={target}",
        "-f", "lavfi",
        "-t", target,
        "-i", profile.silence_source,
        "-map", "0:v",
        "-map", "1:a",
        *profile.codec_args(),
        "-t", target,
        output_path,
    ]


def build_segment_commands(
    segment: PlannedSegment,
    asset: AssetInfo | None,
    output_path: str,
    profile: OutputProfile,
) -> list[list[str]]:
    """All FFmpeg invocations (in order) that produce ``output_path`` for a segment."""
    if segment.filler or asset is None:
        return [build_filler_command(segment, output_path, profile)]
    if segment.hold:
        return build_hold_commands(asset, segment, output_path, profile)
    return [build_range_command(asset, segment, output_path, profile)]
