"""Decompose timeline clips into constant-speed render segments.

The external encoder can only apply a constant time-remap per invocation, so a
clip with a speed ramp is cut into short sub-chunks, each rendered at the mean
of its endpoint speeds. Because speed is linear inside a keyframe span, that
mean times the chunk length is exactly the trapezoid under the curve: the
summed source consumption of a plan equals ``source_time_of`` for the clip.
What the approximation gives up is intra-chunk smoothness of the ramp, which
``chunk_seconds`` bounds.

``plan_video_program`` flattens the two video layers into the single stream
that the concatenation phase produces: VIDEO_B is shown over VIDEO_A, and
timeline gaps become black filler so concatenated time equals timeline time.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping

from rampcut.engine.evaluator import active_clips, pick_visible
from rampcut.engine.timeline import (
    AssetInfo,
    Clip,
    ExhaustionPolicy,
    OverlapPolicy,
    Project,
    TrackKind,
)
from rampcut.exceptions import ValidationError
from rampcut.utils.interpolation import lerp, source_time_of, speed_at

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SECONDS = 0.5
DEFAULT_HOLD_EPSILON = 0.01
DEFAULT_FPS = 30.0
# Spans shorter than this are dropped (sub-frame slivers from float rounding)
MIN_SPAN_SECONDS = 1e-6


@dataclass(frozen=True)
class PlannedSegment:
    """One encoder invocation's worth of video (plus its audio)."""

    timeline_start: float
    timeline_duration: float
    source_start: float = 0.0
    source_end: float = 0.0
    speed: float = 1.0
    hold: bool = False  # render one still frame for the whole duration
    filler: bool = False  # black frame + silence, no source at all
    clip_id: str | None = None
    asset_id: str | None = None
    track_kind: TrackKind | None = None
    muted: bool = False

    @property
    def timeline_end(self) -> float:
        return self.timeline_start + self.timeline_duration

    @property
    def source_duration(self) -> float:
        return self.source_end - self.source_start


@dataclass
class ClipPlan:
    clip: Clip
    segments: list[PlannedSegment] = field(default_factory=list)
    # Clip-local time at which the source media ran out, if it did
    exhausted_at: float | None = None

    @property
    def source_consumed(self) -> float:
        return sum(s.source_duration for s in self.segments if not s.filler)


@dataclass
class VideoProgram:
    duration: float
    segments: list[PlannedSegment] = field(default_factory=list)
    clip_plans: list[ClipPlan] = field(default_factory=list)


# =============================================================================
# Validation
# =============================================================================


def validate_clip(
    clip: Clip,
    kind: TrackKind,
    assets: Mapping[str, AssetInfo],
) -> None:
    """Reject clip data the planner cannot render.

    Raises:
        ValidationError: If timing, keyframes or asset references are malformed
    """
    if clip.duration <= 0:
        raise ValidationError(f"duration must be > 0 (got {clip.duration})", clip_id=clip.id)
    if clip.start_time < 0:
        raise ValidationError(f"start_time must be >= 0 (got {clip.start_time})", clip_id=clip.id)
    if clip.in_point < 0:
        raise ValidationError(f"in_point must be >= 0 (got {clip.in_point})", clip_id=clip.id)

    seen_times: set[float] = set()
    for kf in clip.speed_keyframes:
        if kf.time < 0 or kf.speed < 0:
            raise ValidationError(
                f"speed keyframe ({kf.time}, {kf.speed}) must have non-negative time and speed",
                clip_id=clip.id,
            )
        if kf.time in seen_times:
            raise ValidationError(f"duplicate speed keyframe at t={kf.time}", clip_id=clip.id)
        seen_times.add(kf.time)

    needs_asset = kind != TrackKind.OVERLAY_TEXT
    if needs_asset and (clip.asset_id is None or clip.asset_id not in assets):
        raise ValidationError(f"asset {clip.asset_id!r} is missing", clip_id=clip.id)


def validate_project(project: Project, assets: Mapping[str, AssetInfo]) -> None:
    """Validate every clip and require at least one clip on the timeline."""
    total = 0
    for track in project.tracks:
        for clip in track.clips:
            validate_clip(clip, track.kind, assets)
            total += 1
    if total == 0:
        raise ValidationError("No content on timeline")


# =============================================================================
# Per-clip planning
# =============================================================================


def _speed_pieces(
    clip: Clip,
    local_start: float,
    local_end: float,
) -> list[tuple[float, float, float, float]]:
    """Split ``[local_start, local_end]`` at keyframe times.

    Returns ``(t0, t1, speed0, speed1)`` tuples; speed is linear inside each.
    """
    kfs = clip.speed_keyframes
    if len(kfs) <= 1:
        speed = kfs[0].speed if kfs else 1.0
        return [(local_start, local_end, speed, speed)]

    cuts = sorted({local_start, local_end} | {kf.time for kf in kfs if local_start < kf.time < local_end})
    return [
        (t0, t1, speed_at(t0, kfs), speed_at(t1, kfs))
        for t0, t1 in zip(cuts, cuts[1:])
        if t1 - t0 > MIN_SPAN_SECONDS
    ]


def plan_clip_segments(
    clip: Clip,
    asset: AssetInfo,
    *,
    track_kind: TrackKind | None = None,
    local_start: float = 0.0,
    local_end: float | None = None,
    chunk_seconds: float = DEFAULT_CHUNK_SECONDS,
    hold_epsilon: float = DEFAULT_HOLD_EPSILON,
    exhaustion_policy: ExhaustionPolicy = ExhaustionPolicy.HOLD_LAST_FRAME,
    unknown_source_duration: float = 10000.0,
) -> ClipPlan:
    """Plan constant-speed segments for the clip-local window ``[local_start, local_end]``.

    Constant-speed spans (including a clip with at most one keyframe) become a
    single segment; ramps are cut into chunks of at most ``chunk_seconds``.
    Every segment's source end is clamped to the asset duration. When the
    source runs out the clamped segment is shortened to what it actually
    covers, planning stops, and the rest of the window is filled according to
    ``exhaustion_policy``.
    """
    if local_end is None:
        local_end = clip.duration
    plan = ClipPlan(clip=clip)
    max_source = asset.duration if asset.duration is not None else unknown_source_duration
    cursor = clip.in_point + source_time_of(local_start, clip.speed_keyframes)

    def emit(
        t0: float,
        duration: float,
        source_end: float,
        speed: float,
        hold: bool,
        source_start: float | None = None,
    ) -> None:
        plan.segments.append(
            PlannedSegment(
                timeline_start=clip.start_time + t0,
                timeline_duration=duration,
                source_start=cursor if source_start is None else source_start,
                source_end=source_end,
                speed=speed,
                hold=hold,
                clip_id=clip.id,
                asset_id=clip.asset_id,
                track_kind=track_kind,
                muted=clip.muted,
            )
        )

    for t0, t1, s0, s1 in _speed_pieces(clip, local_start, local_end):
        span = t1 - t0
        steps = 1 if s0 == s1 else max(1, math.ceil(span / chunk_seconds - 1e-9))
        step = span / steps

        for i in range(steps):
            chunk_start = t0 + i * step
            avg_speed = (lerp(s0, s1, i / steps) + lerp(s0, s1, (i + 1) / steps)) / 2
            hold = avg_speed < hold_epsilon

            if cursor >= max_source:
                if not hold:
                    plan.exhausted_at = chunk_start
                    break
                # A deliberate freeze at the very end of the source
                last_frame = _last_frame_time(asset, max_source)
                emit(chunk_start, step, last_frame, avg_speed, True, source_start=last_frame)
                continue

            source_len = step * avg_speed
            source_end = cursor + source_len

            if source_end > max_source and not hold:
                covered = (max_source - cursor) / avg_speed
                if covered > MIN_SPAN_SECONDS:
                    emit(chunk_start, covered, max_source, avg_speed, False)
                cursor = max_source
                plan.exhausted_at = chunk_start + covered
                break

            emit(chunk_start, step, min(source_end, max_source), avg_speed, hold)
            cursor = source_end

        if plan.exhausted_at is not None:
            break

    if plan.exhausted_at is not None and local_end - plan.exhausted_at > MIN_SPAN_SECONDS:
        logger.warning(
            f"[PLAN] Clip {clip.id}: source exhausted at local t={plan.exhausted_at:.3f}s "
            f"(asset duration {max_source:.3f}s), filling {local_end - plan.exhausted_at:.3f}s "
            f"with {exhaustion_policy.value}"
        )
        plan.segments.append(
            _exhaustion_fill(clip, asset, track_kind, plan.exhausted_at, local_end, max_source, exhaustion_policy)
        )

    return plan


def _last_frame_time(asset: AssetInfo, max_source: float) -> float:
    # Seek one frame before the end so the decoder still has a frame to return
    return max(0.0, max_source - 1.0 / (asset.fps or DEFAULT_FPS))


def _exhaustion_fill(
    clip: Clip,
    asset: AssetInfo,
    track_kind: TrackKind | None,
    local_from: float,
    local_to: float,
    max_source: float,
    policy: ExhaustionPolicy,
) -> PlannedSegment:
    duration = local_to - local_from
    if policy == ExhaustionPolicy.BLACK:
        return PlannedSegment(
            timeline_start=clip.start_time + local_from,
            timeline_duration=duration,
            filler=True,
            clip_id=clip.id,
            track_kind=track_kind,
        )
    last_frame = _last_frame_time(asset, max_source)
    return PlannedSegment(
        timeline_start=clip.start_time + local_from,
        timeline_duration=duration,
        source_start=last_frame,
        source_end=last_frame,
        speed=0.0,
        hold=True,
        clip_id=clip.id,
        asset_id=clip.asset_id,
        track_kind=track_kind,
        muted=clip.muted,
    )


# =============================================================================
# Video program
# =============================================================================


@dataclass(frozen=True)
class VisibleSpan:
    start: float  # timeline seconds
    end: float
    clip: Clip | None
    kind: TrackKind | None


def visible_video_spans(
    project: Project,
    *,
    overlap_policy: OverlapPolicy = OverlapPolicy.LAST_WINS,
) -> list[VisibleSpan]:
    """Which video clip is on screen for every stretch of ``[0, project.duration)``.

    VIDEO_B covers VIDEO_A; within one track ``overlap_policy`` decides.
    Stretches without any video clip have ``clip=None``.
    """
    duration = project.duration
    track_a = project.track(TrackKind.VIDEO_A)
    track_b = project.track(TrackKind.VIDEO_B)

    cuts = {0.0, duration}
    for clip in (*track_a.clips, *track_b.clips):
        cuts.update(t for t in (clip.start_time, clip.end_time) if 0.0 < t < duration)
    edges = sorted(cuts)

    spans: list[VisibleSpan] = []
    for start, end in zip(edges, edges[1:]):
        if end - start <= MIN_SPAN_SECONDS:
            continue
        midpoint = (start + end) / 2
        clip = pick_visible(active_clips(track_b.clips, midpoint), overlap_policy)
        kind = TrackKind.VIDEO_B
        if clip is None:
            clip = pick_visible(active_clips(track_a.clips, midpoint), overlap_policy)
            kind = TrackKind.VIDEO_A if clip is not None else None

        if spans and spans[-1].clip is clip and spans[-1].kind == kind:
            spans[-1] = VisibleSpan(spans[-1].start, end, clip, kind)
        else:
            spans.append(VisibleSpan(start, end, clip, kind))
    return spans


def plan_video_program(
    project: Project,
    assets: Mapping[str, AssetInfo],
    *,
    chunk_seconds: float = DEFAULT_CHUNK_SECONDS,
    hold_epsilon: float = DEFAULT_HOLD_EPSILON,
    exhaustion_policy: ExhaustionPolicy = ExhaustionPolicy.HOLD_LAST_FRAME,
    overlap_policy: OverlapPolicy = OverlapPolicy.LAST_WINS,
    unknown_source_duration: float = 10000.0,
) -> VideoProgram:
    """Plan every segment of the flattened video stream, ordered by timeline start."""
    program = VideoProgram(duration=project.duration)

    for span in visible_video_spans(project, overlap_policy=overlap_policy):
        if span.clip is None:
            program.segments.append(
                PlannedSegment(
                    timeline_start=span.start,
                    timeline_duration=span.end - span.start,
                    filler=True,
                )
            )
            continue

        plan = plan_clip_segments(
            span.clip,
            assets[span.clip.asset_id],
            track_kind=span.kind,
            local_start=span.start - span.clip.start_time,
            local_end=span.end - span.clip.start_time,
            chunk_seconds=chunk_seconds,
            hold_epsilon=hold_epsilon,
            exhaustion_policy=exhaustion_policy,
            unknown_source_duration=unknown_source_duration,
        )
        program.clip_plans.append(plan)
        program.segments.extend(plan.segments)

    program.segments.sort(key=lambda s: s.timeline_start)
    logger.info(
        f"[PLAN] {len(program.segments)} segments for {program.duration:.3f}s "
        f"({sum(1 for s in program.segments if s.hold)} hold, "
        f"{sum(1 for s in program.segments if s.filler)} filler)"
    )
    return program
