"""FFmpeg expression strings for keyframe-driven overlay properties.

The overlay filter graph evaluates these per output frame inside the encoder,
so they are not precomputed. They encode the same formulas as
``rampcut.utils.interpolation.interpolate_overlay`` (clamp outside the
keyframed range, eased linear interpolation inside it) as a nested
``if(lte(...))`` chain. Keeping all of the encoder syntax here means the
interpolation math itself is testable without FFmpeg.

Commas are escaped (``\\,``) because the expressions are embedded in filter
option values, where a bare comma would end the filter.
"""

from typing import Sequence

from rampcut.engine.timeline import Easing, OverlayKeyframe


def number(value: float) -> str:
    """Format a number for an expression; negatives are parenthesized."""
    text = format(float(value), ".10g")
    return f"({text})" if value < 0 else text


def escape_commas(expr: str) -> str:
    return expr.replace(",", "\\,")


def eased_fraction(fraction: str, easing: Easing) -> str:
    """Wrap a 0..1 fraction expression in the easing curve."""
    f = f"({fraction})"
    if easing == Easing.EASE_IN:
        return f"({f}*{f})"
    if easing == Easing.EASE_OUT:
        return f"({f}*(2-{f}))"
    if easing == Easing.EASE_IN_OUT:
        return f"if(lt({f},0.5),2*{f}*{f},-1+(4-2*{f})*{f})"
    return f


def keyframe_expression(
    keyframes: Sequence[OverlayKeyframe],
    field: str,
    default: float | str,
    clip_start: float,
    *,
    escape: bool = True,
    variable: str = "t",
) -> str:
    """Build a time-varying expression for one overlay property.

    Args:
        keyframes: Overlay keyframes of the clip (any order)
        field: Keyframe attribute to animate ("x", "opacity", ...)
        default: Value (or expression) used when there are no keyframes
        clip_start: Timeline start of the clip; keyframe times are clip-local
        escape: Escape commas for embedding in a filter graph
        variable: Timeline-seconds variable of the target filter (``T`` for geq)

    Returns:
        Expression in FFmpeg's evaluator syntax, in terms of ``variable``
    """
    kfs = sorted(keyframes, key=lambda k: k.time)
    if not kfs:
        return str(default)

    local_t = f"({variable}-{number(clip_start)})"
    expr = number(getattr(kfs[-1], field))

    for left, right in reversed(list(zip(kfs, kfs[1:]))):
        v1 = getattr(left, field)
        v2 = getattr(right, field)
        span = right.time - left.time
        if span <= 0:
            segment = number(v1)
        else:
            fraction = f"({local_t}-{number(left.time)})/{number(span)}"
            eased = eased_fraction(fraction, left.easing)
            segment = f"({number(v1)}+({number(v2 - v1)})*{eased})"
        expr = f"if(lte({local_t},{number(right.time)}),{segment},{expr})"

    expr = f"if(lte({local_t},{number(kfs[0].time)}),{number(getattr(kfs[0], field))},{expr})"
    return escape_commas(expr) if escape else expr


def active_window_expression(start: float, end: float, *, escape: bool = True) -> str:
    """Half-open ``start <= t < end`` gate for a filter's ``enable`` option."""
    expr = f"gte(t,{number(start)})*lt(t,{number(end)})"
    return escape_commas(expr) if escape else expr
