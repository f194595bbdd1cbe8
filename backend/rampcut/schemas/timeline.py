"""Wire/persisted timeline format and its translation to the engine snapshot.

The persisted form uses snake_case field names (``scale_x``, ``start_time``)
and accepts the browser editor's camelCase keyframe list names. This module is
the only place those names are translated; everything past ``to_project``
works on ``rampcut.engine.timeline`` types.
"""

from typing import Any

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from rampcut.engine.timeline import (
    Clip,
    OverlayKeyframe,
    Project,
    SpeedKeyframe,
    Track,
    TrackKind,
)
from rampcut.exceptions import ValidationError
from rampcut.utils.interpolation import parse_easing


class SpeedKeyframeData(BaseModel):
    time: float
    speed: float


class OverlayKeyframeData(BaseModel):
    time: float
    x: float = 0
    y: float = 0
    scale_x: float = 1.0
    scale_y: float = 1.0
    rotation: float = 0
    opacity: float = 1.0
    easing: str | None = None  # missing means linear


class ClipData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    asset_id: str | None = None
    start_time: float = 0
    duration: float
    in_point: float = 0
    out_point: float = 0
    properties: dict[str, Any] = Field(default_factory=dict)
    speed_keyframes: list[SpeedKeyframeData] = Field(
        default_factory=list,
        validation_alias=AliasChoices("speed_keyframes", "speedKeyframes"),
    )
    overlay_keyframes: list[OverlayKeyframeData] = Field(
        default_factory=list,
        validation_alias=AliasChoices("overlay_keyframes", "overlayKeyframes"),
    )

    def to_clip(self) -> Clip:
        overlay: list[OverlayKeyframe] = []
        for kf in sorted(self.overlay_keyframes, key=lambda k: k.time):
            try:
                easing = parse_easing(kf.easing)
            except ValueError as e:
                raise ValidationError(str(e), clip_id=self.id) from e
            overlay.append(
                OverlayKeyframe(
                    time=kf.time,
                    x=kf.x,
                    y=kf.y,
                    scale_x=kf.scale_x,
                    scale_y=kf.scale_y,
                    rotation=kf.rotation,
                    opacity=min(1.0, max(0.0, kf.opacity)),
                    easing=easing,
                )
            )

        return Clip(
            id=self.id,
            start_time=self.start_time,
            duration=self.duration,
            in_point=self.in_point,
            out_point=self.out_point,
            asset_id=self.asset_id,
            properties=dict(self.properties),
            speed_keyframes=tuple(
                SpeedKeyframe(time=kf.time, speed=kf.speed)
                for kf in sorted(self.speed_keyframes, key=lambda k: k.time)
            ),
            overlay_keyframes=tuple(overlay),
        )


class TrackData(BaseModel):
    id: str | None = None
    type: TrackKind
    clips: list[ClipData] = Field(default_factory=list)


class TimelineData(BaseModel):
    tracks: list[TrackData] = Field(default_factory=list)

    def to_project(self, project_id: str, name: str = "") -> Project:
        """Build the immutable snapshot; every track kind is present exactly once.

        Raises:
            ValidationError: If a track kind appears more than once
        """
        by_kind: dict[TrackKind, Track] = {}
        for track in self.tracks:
            if track.type in by_kind:
                raise ValidationError(f"Duplicate track of kind {track.type.value}")
            by_kind[track.type] = Track(
                id=track.id or f"{project_id}:{track.type.value}",
                kind=track.type,
                clips=tuple(clip.to_clip() for clip in track.clips),
            )

        tracks = tuple(
            by_kind.get(kind) or Track(id=f"{project_id}:{kind.value}", kind=kind)
            for kind in TrackKind
        )
        return Project(id=project_id, tracks=tracks, name=name)


def parse_timeline(project_id: str, timeline_data: dict[str, Any] | None, name: str = "") -> Project:
    """Validate persisted timeline JSON and return the engine snapshot."""
    try:
        timeline = TimelineData.model_validate(timeline_data or {})
    except pydantic.ValidationError as e:
        raise ValidationError(f"Malformed timeline data: {e.errors()[0].get('msg', e)}") from e
    return timeline.to_project(project_id, name)
