"""Immutable project snapshot used by the time engine and the export planner.

These types are the canonical in-memory form of a timeline. They are built
once per request (see ``rampcut.schemas.timeline``) and only ever read, so the
evaluator and planner can be called from any number of threads at once.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class TrackKind(str, Enum):
    """Fixed set of track kinds. Every project has exactly one track of each."""

    VIDEO_A = "VIDEO_A"  # primary video, bottom compositing layer
    VIDEO_B = "VIDEO_B"  # secondary video, composited over VIDEO_A
    OVERLAY_TEXT = "OVERLAY_TEXT"
    OVERLAY_IMAGE = "OVERLAY_IMAGE"
    AUDIO = "AUDIO"

    @property
    def is_video(self) -> bool:
        return self in (TrackKind.VIDEO_A, TrackKind.VIDEO_B)

    @property
    def is_overlay(self) -> bool:
        return self in (TrackKind.OVERLAY_TEXT, TrackKind.OVERLAY_IMAGE)


class Easing(str, Enum):
    LINEAR = "linear"
    EASE_IN = "ease_in"
    EASE_OUT = "ease_out"
    EASE_IN_OUT = "ease_in_out"


class OverlapPolicy(str, Enum):
    """Which clip is shown when two clips overlap on one video track."""

    LAST_WINS = "last_wins"  # the clip that starts later is on top
    FIRST_WINS = "first_wins"


class ExhaustionPolicy(str, Enum):
    """What fills the rest of a clip once its source media has run out."""

    HOLD_LAST_FRAME = "hold_last_frame"
    BLACK = "black"


@dataclass(frozen=True)
class SpeedKeyframe:
    time: float  # seconds from clip start
    speed: float  # 0 means hold


@dataclass(frozen=True)
class Transform:
    x: float = 0.0
    y: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    rotation: float = 0.0  # degrees
    opacity: float = 1.0

    def to_dict(self) -> dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "scale_x": self.scale_x,
            "scale_y": self.scale_y,
            "rotation": self.rotation,
            "opacity": self.opacity,
        }


@dataclass(frozen=True)
class OverlayKeyframe:
    time: float
    x: float = 0.0
    y: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    rotation: float = 0.0
    opacity: float = 1.0
    easing: Easing = Easing.LINEAR

    def transform(self) -> Transform:
        return Transform(
            x=self.x,
            y=self.y,
            scale_x=self.scale_x,
            scale_y=self.scale_y,
            rotation=self.rotation,
            opacity=self.opacity,
        )


@dataclass(frozen=True)
class Clip:
    id: str
    start_time: float
    duration: float
    in_point: float = 0.0
    out_point: float = 0.0
    asset_id: str | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    speed_keyframes: tuple[SpeedKeyframe, ...] = ()
    overlay_keyframes: tuple[OverlayKeyframe, ...] = ()

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def muted(self) -> bool:
        return self.properties.get("muted") is True

    @property
    def volume(self) -> float:
        volume = self.properties.get("volume")
        return 1.0 if volume is None else float(volume)

    def contains(self, time: float) -> bool:
        """Half-open activation test: ``start_time <= time < end_time``."""
        return self.start_time <= time < self.end_time


@dataclass(frozen=True)
class Track:
    id: str
    kind: TrackKind
    clips: tuple[Clip, ...] = ()


@dataclass(frozen=True)
class AssetInfo:
    """Probed metadata for a media asset, as supplied by the ingest layer."""

    id: str
    path: str
    duration: float | None = None
    fps: float | None = None
    has_audio: bool = False
    kind: str = "video"


@dataclass(frozen=True)
class Project:
    id: str
    tracks: tuple[Track, ...]
    name: str = ""

    def track(self, kind: TrackKind) -> Track:
        for track in self.tracks:
            if track.kind == kind:
                return track
        return Track(id=f"{self.id}:{kind.value}", kind=kind)

    @property
    def duration(self) -> float:
        """End of the last clip on any track."""
        return max(
            (clip.end_time for track in self.tracks for clip in track.clips),
            default=0.0,
        )
