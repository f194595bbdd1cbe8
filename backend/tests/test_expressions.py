"""Tests for FFmpeg keyframe expressions.

The generated expressions are evaluated here with a tiny Python stand-in for
FFmpeg's evaluator (``if``/``lte``/``lt``/``gte`` plus arithmetic) and compared
against ``interpolate_overlay``, so preview and export agree frame for frame.
"""

import math
import re

import pytest

from rampcut.engine.timeline import Easing, OverlayKeyframe
from rampcut.render.expressions import (
    active_window_expression,
    keyframe_expression,
    number,
)
from rampcut.utils.interpolation import interpolate_overlay


def evaluate(expr: str, **variables: float) -> float:
    """Evaluate an FFmpeg expression built from the supported subset."""
    source = re.sub(r"\bif\(", "_if(", expr.replace("\\,", ","))
    functions = {
        "_if": lambda cond, a, b: a if cond else b,
        "lte": lambda a, b: 1 if a <= b else 0,
        "lt": lambda a, b: 1 if a < b else 0,
        "gte": lambda a, b: 1 if a >= b else 0,
        "PI": math.pi,
    }
    return eval(source, {"__builtins__": {}}, {**functions, **variables})


class TestNumber:
    def test_formatting(self):
        assert number(1.0) == "1"
        assert number(0.25) == "0.25"
        assert number(-3) == "(-3)"


class TestKeyframeExpression:
    """Expressions must reproduce interpolate_overlay."""

    @pytest.fixture
    def keyframes(self):
        return [
            OverlayKeyframe(time=0.0, x=-40, opacity=0.0, easing=Easing.EASE_OUT),
            OverlayKeyframe(time=1.0, x=200, opacity=1.0, easing=Easing.EASE_IN_OUT),
            OverlayKeyframe(time=2.5, x=120, opacity=0.5, easing=Easing.EASE_IN),
            OverlayKeyframe(time=4.0, x=0, opacity=0.2),
        ]

    @pytest.mark.parametrize("field", ["x", "opacity"])
    def test_matches_interpolation(self, keyframes, field):
        clip_start = 3.0
        expr = keyframe_expression(keyframes, field, 0, clip_start, escape=False)

        for i in range(0, 61):
            t = clip_start - 0.5 + i * 0.1
            expected = getattr(interpolate_overlay(t - clip_start, keyframes), field)
            assert evaluate(expr, t=t) == pytest.approx(expected, abs=1e-9)

    def test_escaped_by_default(self, keyframes):
        expr = keyframe_expression(keyframes, "x", 0, 0.0)
        assert "," not in expr.replace("\\,", "")

    def test_no_keyframes_returns_default(self):
        assert keyframe_expression([], "x", "(main_w-overlay_w)/2", 1.0) == "(main_w-overlay_w)/2"

    def test_custom_variable(self, keyframes):
        """geq exposes time as ``T``."""
        expr = keyframe_expression(keyframes, "opacity", 1, 0.0, escape=False, variable="T")
        assert "(T-0)" in expr
        assert evaluate(expr, T=1.0) == pytest.approx(1.0)


class TestActiveWindow:
    def test_half_open(self):
        expr = active_window_expression(1.0, 3.0, escape=False)

        assert evaluate(expr, t=0.99) == 0
        assert evaluate(expr, t=1.0) == 1
        assert evaluate(expr, t=2.99) == 1
        assert evaluate(expr, t=3.0) == 0

    def test_escaped(self):
        assert active_window_expression(1.0, 3.0) == "gte(t\\,1)*lt(t\\,3)"
