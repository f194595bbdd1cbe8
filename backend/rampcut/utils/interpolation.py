"""Keyframe math for variable-speed playback and overlay animation.

Pure functions only: no I/O, no shared state. Used by the timeline evaluator
(preview) and by the export planner, so a frame shown in preview and the same
frame in an export are computed with identical formulas.

Usage:
    from rampcut.utils.interpolation import source_time_of, interpolate_overlay

    # Seconds of source media consumed 1.5s into a clip that ramps 1x -> 3x
    consumed = source_time_of(1.5, [SpeedKeyframe(0, 1), SpeedKeyframe(2, 3)])

    # Overlay transform halfway between two keyframes
    transform = interpolate_overlay(0.5, overlay_keyframes)
"""

from operator import attrgetter
from typing import Callable, Sequence

from rampcut.engine.timeline import Easing, OverlayKeyframe, SpeedKeyframe, Transform

DEFAULT_SPEED = 1.0
DEFAULT_TRANSFORM = Transform()

_by_time = attrgetter("time")


# =============================================================================
# Easing Functions
# =============================================================================


def linear(t: float) -> float:
    """Linear easing (no easing)."""
    return t


def ease_in(t: float) -> float:
    """Ease in (quadratic)."""
    return t * t


def ease_out(t: float) -> float:
    """Ease out (quadratic)."""
    return t * (2 - t)


def ease_in_out(t: float) -> float:
    """Ease in-out (quadratic), split at the midpoint."""
    if t < 0.5:
        return 2 * t * t
    return -1 + (4 - 2 * t) * t


EASING_FUNCTIONS: dict[Easing, Callable[[float], float]] = {
    Easing.LINEAR: linear,
    Easing.EASE_IN: ease_in,
    Easing.EASE_OUT: ease_out,
    Easing.EASE_IN_OUT: ease_in_out,
}

# Persisted/browser names -> canonical easing
EASING_ALIASES: dict[str, Easing] = {
    "linear": Easing.LINEAR,
    "easeIn": Easing.EASE_IN,
    "easeOut": Easing.EASE_OUT,
    "easeInOut": Easing.EASE_IN_OUT,
    "ease_in": Easing.EASE_IN,
    "ease_out": Easing.EASE_OUT,
    "ease_in_out": Easing.EASE_IN_OUT,
}


def parse_easing(name: str | None) -> Easing:
    """Resolve an easing name; a missing name means linear.

    Raises:
        ValueError: If the easing name is not recognized
    """
    if not name:
        return Easing.LINEAR
    easing = EASING_ALIASES.get(name)
    if easing is None:
        raise ValueError(
            f"Unknown easing function: {name}. "
            f"Available: {', '.join(EASING_ALIASES.keys())}"
        )
    return easing


def get_easing_function(easing: Easing | str | None) -> Callable[[float], float]:
    """Get an easing function by enum value or name."""
    if not isinstance(easing, Easing):
        easing = parse_easing(easing)
    return EASING_FUNCTIONS[easing]


# =============================================================================
# Core Interpolation
# =============================================================================


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def _fraction(time: float, start: float, end: float) -> float:
    span = end - start
    if span <= 0:
        return 0.0
    return (time - start) / span


# =============================================================================
# Speed
# =============================================================================


def speed_at(local_time: float, keyframes: Sequence[SpeedKeyframe]) -> float:
    """Instantaneous playback speed at a clip-local time.

    Linear between the bounding keyframes, clamped to the first/last speed
    outside the keyframed range, 1.0 when there are no keyframes.
    """
    if not keyframes:
        return DEFAULT_SPEED

    kfs = sorted(keyframes, key=_by_time)
    if local_time <= kfs[0].time:
        return kfs[0].speed
    if local_time >= kfs[-1].time:
        return kfs[-1].speed

    for left, right in zip(kfs, kfs[1:]):
        if left.time <= local_time <= right.time:
            return lerp(left.speed, right.speed, _fraction(local_time, left.time, right.time))
    return kfs[-1].speed


def source_time_of(local_time: float, keyframes: Sequence[SpeedKeyframe]) -> float:
    """Seconds of source media consumed between clip start and ``local_time``.

    Exact trapezoidal integration of the piecewise-linear speed curve: every
    fully elapsed keyframe segment contributes ``(t1 - t0) * (s0 + s1) / 2`` and
    the partial segment contributes the trapezoid up to the interpolated speed
    at ``local_time``. Before the first keyframe its speed applies; after the
    last keyframe the last speed applies. Without keyframes the mapping is the
    identity.

    Monotonically non-decreasing in ``local_time`` for non-negative speeds;
    zero-speed (hold) segments contribute nothing.
    """
    if not keyframes:
        return local_time

    kfs = sorted(keyframes, key=_by_time)
    consumed = 0.0
    prev_time = 0.0
    prev_speed = kfs[0].speed

    for kf in kfs:
        if local_time <= kf.time:
            elapsed = local_time - prev_time
            if kf.time - prev_time <= 0:
                return consumed + prev_speed * elapsed
            speed_now = lerp(prev_speed, kf.speed, _fraction(local_time, prev_time, kf.time))
            return consumed + elapsed * (prev_speed + speed_now) / 2

        consumed += (kf.time - prev_time) * (prev_speed + kf.speed) / 2
        prev_time = kf.time
        prev_speed = kf.speed

    return consumed + (local_time - prev_time) * prev_speed


# =============================================================================
# Overlay transforms
# =============================================================================


def interpolate_overlay(
    local_time: float,
    keyframes: Sequence[OverlayKeyframe],
) -> Transform:
    """Overlay transform at a clip-local time.

    Locates the bounding keyframe pair, eases the normalized segment fraction
    with the earlier keyframe's easing, then interpolates every field linearly
    with the eased fraction. Clamps to the first/last keyframe outside the
    keyframed range; no keyframes yields the identity transform.
    """
    if not keyframes:
        return DEFAULT_TRANSFORM

    kfs = sorted(keyframes, key=_by_time)
    if local_time <= kfs[0].time:
        return kfs[0].transform()
    if local_time >= kfs[-1].time:
        return kfs[-1].transform()

    for left, right in zip(kfs, kfs[1:]):
        if left.time <= local_time <= right.time:
            t = get_easing_function(left.easing)(_fraction(local_time, left.time, right.time))
            return Transform(
                x=lerp(left.x, right.x, t),
                y=lerp(left.y, right.y, t),
                scale_x=lerp(left.scale_x, right.scale_x, t),
                scale_y=lerp(left.scale_y, right.scale_y, t),
                rotation=lerp(left.rotation, right.rotation, t),
                opacity=lerp(left.opacity, right.opacity, t),
            )
    return kfs[-1].transform()
