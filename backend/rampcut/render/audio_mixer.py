"""
Audio mixing (phase 4) with FFmpeg.

Every clip on the AUDIO track is trimmed to the source range it consumes,
tempo-adjusted, volume-scaled and delayed to its timeline position, then mixed
with the audio bed already carried by the composited video (the video clips'
own sound). The bed decides the output length.

Speed ramps on audio clips are approximated by one constant tempo (the mean
speed over the clip), so an audio clip always spans its full timeline extent.
"""

import logging
from dataclasses import dataclass
from typing import Mapping

from rampcut.config import get_settings
from rampcut.engine.timeline import AssetInfo, Clip, Project, TrackKind
from rampcut.render.expressions import number
from rampcut.render.segment_renderer import atempo_chain
from rampcut.utils.interpolation import source_time_of

logger = logging.getLogger(__name__)


@dataclass
class AudioClipData:
    """Audio clip data for mixing."""

    clip_id: str
    file_path: str
    start: float  # timeline seconds
    duration: float  # timeline seconds
    source_start: float
    source_end: float
    tempo: float = 1.0
    volume: float = 1.0


class AudioMixer:
    """
    FFmpeg-based mixer for the AUDIO track.

    Supports:
    - Source trimming with asset-duration clamping
    - Constant or mean-ramp tempo via chained atempo
    - Per-clip volume and mute
    """

    def __init__(self, sample_rate: int | None = None, bitrate: str | None = None):
        settings = get_settings()
        self.sample_rate = sample_rate or settings.render_audio_sample_rate
        self.bitrate = bitrate or settings.render_audio_bitrate
        self.hold_epsilon = settings.export_hold_epsilon
        self.unknown_source_duration = settings.export_unknown_source_duration

    def collect_clips(
        self,
        project: Project,
        assets: Mapping[str, AssetInfo],
    ) -> list[AudioClipData]:
        """Turn AUDIO track clips into mixer inputs, skipping silent ones."""
        result: list[AudioClipData] = []
        for clip in sorted(project.track(TrackKind.AUDIO).clips, key=lambda c: c.start_time):
            asset = assets[clip.asset_id]
            if not asset.has_audio:
                logger.info(f"[AUDIO MIX] Clip {clip.id}: asset has no audio stream, skipping")
                continue
            data = self._clip_data(clip, asset)
            if data is not None:
                result.append(data)
        logger.info(f"[AUDIO MIX] {len(result)} audio clips to mix")
        return result

    def _clip_data(self, clip: Clip, asset: AssetInfo) -> AudioClipData | None:
        max_source = asset.duration if asset.duration is not None else self.unknown_source_duration
        consumed = source_time_of(clip.duration, clip.speed_keyframes)
        tempo = consumed / clip.duration

        if tempo < self.hold_epsilon:
            logger.info(f"[AUDIO MIX] Clip {clip.id}: speed ~0, nothing audible")
            return None

        source_start = min(clip.in_point, max_source)
        source_end = min(clip.in_point + consumed, max_source)
        if source_end <= source_start:
            logger.warning(f"[AUDIO MIX] Clip {clip.id}: in_point beyond source end, skipping")
            return None

        return AudioClipData(
            clip_id=clip.id,
            file_path=asset.path,
            start=clip.start_time,
            duration=clip.duration,
            source_start=source_start,
            source_end=source_end,
            tempo=tempo,
            volume=0.0 if clip.muted else clip.volume,
        )

    def build_clip_filter(self, clip: AudioClipData, input_idx: int, label: str) -> str:
        """Filter chain for one clip: trim, retime, volume, then position."""
        parts = [
            f"atrim=start={number(clip.source_start)}:end={number(clip.source_end)}",
            "asetpts=PTS-STARTPTS",
            *atempo_chain(clip.tempo),
            f"aresample={self.sample_rate}",
            # Shorter sources (clamped) end early; never let a clip run past its extent
            f"atrim=duration={number(clip.duration)}",
        ]
        if clip.volume != 1.0:
            parts.append(f"volume={number(clip.volume)}")
        if clip.start > 0:
            delay_samples = int(round(clip.start * self.sample_rate))
            parts.append(f"adelay={delay_samples}S:all=1")
        return f"[{input_idx}:a]" + ",".join(parts) + f"[{label}]"

    def build_filter_complex(self, clips: list[AudioClipData]) -> str:
        """Mix every clip with the bed on input 0; output label ``aout``."""
        filter_parts = [
            self.build_clip_filter(clip, idx + 1, f"a{idx}") for idx, clip in enumerate(clips)
        ]
        mix_inputs = "[0:a]" + "".join(f"[a{idx}]" for idx in range(len(clips)))
        filter_parts.append(
            f"{mix_inputs}amix=inputs={len(clips) + 1}:duration=first:dropout_transition=0:normalize=0[aout]"
        )
        return ";\n".join(filter_parts)

    def build_command(
        self,
        base_path: str,
        clips: list[AudioClipData],
        output_path: str,
        duration: float,
    ) -> list[str]:
        """Encoder arguments that replace ``base_path``'s audio with the mix."""
        inputs = ["-i", base_path]
        for clip in clips:
            inputs += ["-i", clip.file_path]
        return [
            "-y",
            *inputs,
            "-filter_complex", self.build_filter_complex(clips),
            "-map", "0:v",
            "-map", "[aout]",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", self.bitrate,
            "-ar", str(self.sample_rate),
            "-t", number(duration),
            "-movflags", "+faststart",
            output_path,
        ]
