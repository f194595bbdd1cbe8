"""Tests for persisted timeline parsing."""

import pytest

from rampcut.engine.timeline import Easing, TrackKind
from rampcut.exceptions import ValidationError
from rampcut.schemas.timeline import parse_timeline


class TestParseTimeline:
    def test_builds_snapshot(self, simple_timeline):
        project = parse_timeline("p1", simple_timeline, name="Demo")

        assert project.name == "Demo"
        assert [t.kind for t in project.tracks] == list(TrackKind)
        clip = project.track(TrackKind.VIDEO_A).clips[0]
        assert clip.asset_id == "asset-video"
        assert [(k.time, k.speed) for k in clip.speed_keyframes] == [(0, 1), (3, 2)]
        assert project.duration == pytest.approx(3.0)

    def test_missing_tracks_are_empty(self):
        project = parse_timeline("p1", {"tracks": [{"type": "AUDIO", "clips": []}]})

        assert len(project.tracks) == len(TrackKind)
        assert project.track(TrackKind.VIDEO_B).clips == ()

    def test_none_is_empty_timeline(self):
        assert parse_timeline("p1", None).duration == 0

    def test_overlay_keyframes_snake_and_camel(self):
        timeline = {
            "tracks": [
                {
                    "type": "OVERLAY_IMAGE",
                    "clips": [
                        {
                            "id": "img",
                            "asset_id": "logo",
                            "duration": 2,
                            "overlayKeyframes": [
                                {"time": 1, "x": 10, "scale_x": 2, "opacity": 3, "easing": "easeInOut"},
                                {"time": 0, "x": 0},
                            ],
                        }
                    ],
                }
            ]
        }

        clip = parse_timeline("p1", timeline).track(TrackKind.OVERLAY_IMAGE).clips[0]

        assert [k.time for k in clip.overlay_keyframes] == [0, 1]
        assert clip.overlay_keyframes[1].easing == Easing.EASE_IN_OUT
        assert clip.overlay_keyframes[1].scale_x == 2
        # Opacity is clamped to [0, 1]
        assert clip.overlay_keyframes[1].opacity == 1.0

    def test_unknown_easing_names_clip(self):
        timeline = {
            "tracks": [
                {
                    "type": "OVERLAY_TEXT",
                    "clips": [{"id": "t1", "duration": 1, "overlay_keyframes": [{"time": 0, "easing": "wobble"}]}],
                }
            ]
        }

        with pytest.raises(ValidationError) as exc_info:
            parse_timeline("p1", timeline)

        assert exc_info.value.clip_id == "t1"

    def test_duplicate_track_kind(self):
        timeline = {"tracks": [{"type": "VIDEO_A"}, {"type": "VIDEO_A"}]}
        with pytest.raises(ValidationError, match="Duplicate track"):
            parse_timeline("p1", timeline)

    def test_malformed(self):
        timeline = {"tracks": [{"type": "VIDEO_C", "clips": []}]}
        with pytest.raises(ValidationError, match="Malformed timeline data"):
            parse_timeline("p1", timeline)
