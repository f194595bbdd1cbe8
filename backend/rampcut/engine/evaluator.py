"""Timeline evaluation for interactive preview.

``evaluate_at`` is called by the preview driver once per displayed frame. It
reads an immutable ``Project`` snapshot and returns which clips are visible or
audible at that instant, with their source time (video/audio) or animated
transform (overlays).
"""

from dataclasses import dataclass, field
from typing import Any

from rampcut.engine.timeline import (
    Clip,
    OverlapPolicy,
    Project,
    TrackKind,
    Transform,
)
from rampcut.utils.interpolation import interpolate_overlay, source_time_of


@dataclass(frozen=True)
class ActiveMedia:
    """A video or audio clip active at the query time."""

    clip: Clip
    track_kind: TrackKind
    local_time: float
    source_time: float

    @property
    def asset_id(self) -> str | None:
        return self.clip.asset_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "clip_id": self.clip.id,
            "asset_id": self.clip.asset_id,
            "local_time": self.local_time,
            "source_time": self.source_time,
            "properties": dict(self.clip.properties),
        }


@dataclass(frozen=True)
class ActiveOverlay:
    """A text or image overlay clip active at the query time."""

    clip: Clip
    track_kind: TrackKind
    local_time: float
    transform: Transform

    @property
    def asset_id(self) -> str | None:
        return self.clip.asset_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "clip_id": self.clip.id,
            "asset_id": self.clip.asset_id,
            "local_time": self.local_time,
            "transform": self.transform.to_dict(),
            "properties": dict(self.clip.properties),
        }


@dataclass
class ActiveLayers:
    """Everything that contributes to the frame at one timeline instant."""

    time: float
    video_a: ActiveMedia | None = None
    video_b: ActiveMedia | None = None
    overlay_texts: list[ActiveOverlay] = field(default_factory=list)
    overlay_images: list[ActiveOverlay] = field(default_factory=list)
    audio: list[ActiveMedia] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return (
            self.video_a is None
            and self.video_b is None
            and not self.overlay_texts
            and not self.overlay_images
            and not self.audio
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "video_a": self.video_a.to_dict() if self.video_a else None,
            "video_b": self.video_b.to_dict() if self.video_b else None,
            "overlay_texts": [o.to_dict() for o in self.overlay_texts],
            "overlay_images": [o.to_dict() for o in self.overlay_images],
            "audio": [a.to_dict() for a in self.audio],
        }


def active_clips(clips: tuple[Clip, ...] | list[Clip], time: float) -> list[Clip]:
    """Clips whose half-open extent ``[start, end)`` contains ``time``, in start order."""
    return sorted(
        (clip for clip in clips if clip.contains(time)),
        key=lambda c: c.start_time,
    )


def pick_visible(candidates: list[Clip], policy: OverlapPolicy) -> Clip | None:
    """Choose the single visible clip among overlapping clips on one video track."""
    if not candidates:
        return None
    if policy == OverlapPolicy.FIRST_WINS:
        return candidates[0]
    return candidates[-1]


def _media_entry(clip: Clip, kind: TrackKind, time: float) -> ActiveMedia:
    local_time = time - clip.start_time
    return ActiveMedia(
        clip=clip,
        track_kind=kind,
        local_time=local_time,
        source_time=clip.in_point + source_time_of(local_time, clip.speed_keyframes),
    )


def _overlay_entry(clip: Clip, kind: TrackKind, time: float) -> ActiveOverlay:
    local_time = time - clip.start_time
    return ActiveOverlay(
        clip=clip,
        track_kind=kind,
        local_time=local_time,
        transform=interpolate_overlay(local_time, clip.overlay_keyframes),
    )


def evaluate_at(
    project: Project,
    time: float,
    *,
    video_overlap: OverlapPolicy = OverlapPolicy.LAST_WINS,
) -> ActiveLayers:
    """Evaluate every track of ``project`` at timeline ``time`` (seconds).

    Video tracks yield at most one entry each (``video_overlap`` decides between
    overlapping clips); overlay and audio tracks yield every active clip.
    """
    layers = ActiveLayers(time=time)

    for track in project.tracks:
        candidates = active_clips(track.clips, time)
        if not candidates:
            continue

        if track.kind.is_video:
            visible = pick_visible(candidates, video_overlap)
            entry = _media_entry(visible, track.kind, time)
            if track.kind == TrackKind.VIDEO_A:
                layers.video_a = entry
            else:
                layers.video_b = entry
        elif track.kind.is_overlay:
            target = layers.overlay_texts if track.kind == TrackKind.OVERLAY_TEXT else layers.overlay_images
            target.extend(_overlay_entry(c, track.kind, time) for c in candidates)
        elif track.kind == TrackKind.AUDIO:
            layers.audio.extend(_media_entry(c, track.kind, time) for c in candidates)

    return layers
