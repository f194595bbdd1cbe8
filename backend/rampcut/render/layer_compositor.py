"""Overlay compositing (phase 3) with an FFmpeg filter script.

Text and image overlay clips are stacked over the concatenated base video in
track order (images, then text on top), each clip in start order. Every
overlay goes through one chain::

    [n:v] format=rgba, rotate, scale (eval=frame), alpha -> [ovN]
    [base][ovN] overlay=x=..:y=..:eval=frame:enable=gte(t,start)*lt(t,end)

Position, scale, rotation and opacity are keyframe expressions evaluated per
frame by the encoder (see ``rampcut.render.expressions``).
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from rampcut.engine.timeline import AssetInfo, Clip, OverlayKeyframe, Project, TrackKind
from rampcut.render.expressions import active_window_expression, keyframe_expression, number
from rampcut.render.segment_renderer import OutputProfile
from rampcut.render.text_renderer import TextRenderer

logger = logging.getLogger(__name__)

# Overlays without position keyframes are centered on the frame
CENTER_X = "(main_w-overlay_w)/2"
CENTER_Y = "(main_h-overlay_h)/2"


@dataclass
class OverlayInput:
    """One overlay clip with the still image the encoder loops for it."""

    clip: Clip
    track_kind: TrackKind
    image_path: str

    @property
    def keyframes(self) -> tuple[OverlayKeyframe, ...]:
        return self.clip.overlay_keyframes


def _is_constant(keyframes: tuple[OverlayKeyframe, ...], field: str) -> bool:
    return len({getattr(kf, field) for kf in keyframes}) <= 1


class LayerCompositor:
    """Builds the phase-3 overlay filter graph and encoder command."""

    def __init__(
        self,
        profile: OutputProfile | None = None,
        text_renderer: TextRenderer | None = None,
    ):
        self.profile = profile or OutputProfile.from_settings()
        self.text_renderer = text_renderer or TextRenderer()

    def collect_overlays(
        self,
        project: Project,
        assets: Mapping[str, AssetInfo],
        work_dir: str,
    ) -> list[OverlayInput]:
        """Resolve every overlay clip to an image file, rendering text clips to PNG."""
        overlays: list[OverlayInput] = []

        for clip in sorted(project.track(TrackKind.OVERLAY_IMAGE).clips, key=lambda c: c.start_time):
            asset = assets[clip.asset_id]
            overlays.append(OverlayInput(clip, TrackKind.OVERLAY_IMAGE, asset.path))

        for idx, clip in enumerate(sorted(project.track(TrackKind.OVERLAY_TEXT).clips, key=lambda c: c.start_time)):
            png_path = os.path.join(work_dir, f"text_{idx}.png")
            self.text_renderer.render_clip(clip.properties, png_path)
            overlays.append(OverlayInput(clip, TrackKind.OVERLAY_TEXT, png_path))

        logger.info(f"[OVERLAY] {len(overlays)} overlay clips")
        return overlays

    def _opacity_filter(self, overlay: OverlayInput) -> str | None:
        kfs = overlay.keyframes
        start = overlay.clip.start_time
        if not kfs:
            return None
        if _is_constant(kfs, "opacity"):
            alpha = kfs[0].opacity
            return None if alpha >= 1.0 else f"colorchannelmixer=aa={number(alpha)}"
        # colorchannelmixer takes constants only; geq scales alpha per frame (T = seconds)
        alpha = keyframe_expression(kfs, "opacity", 1, start, variable="T")
        return (
            "geq=r=r(X\\,Y):g=g(X\\,Y):b=b(X\\,Y):"
            f"a=alpha(X\\,Y)*({alpha})"
        )

    def build_overlay_chain(self, overlay: OverlayInput, input_idx: int, label: str) -> str:
        """Transform chain for one overlay input, ending in ``[label]``."""
        kfs = overlay.keyframes
        start = overlay.clip.start_time
        filters = ["format=rgba"]

        if kfs and not (_is_constant(kfs, "rotation") and kfs[0].rotation == 0):
            angle = keyframe_expression(kfs, "rotation", 0, start)
            filters.append(
                f"rotate=({angle})*PI/180:c=none:ow=hypot(iw\\,ih):oh=ow"
            )

        if kfs and not (_is_constant(kfs, "scale_x") and _is_constant(kfs, "scale_y")
                        and kfs[0].scale_x == 1 and kfs[0].scale_y == 1):
            sx = keyframe_expression(kfs, "scale_x", 1, start)
            sy = keyframe_expression(kfs, "scale_y", 1, start)
            filters.append(
                f"scale=w=max(1\\,iw*({sx})):h=max(1\\,ih*({sy})):eval=frame"
            )

        opacity = self._opacity_filter(overlay)
        if opacity:
            filters.append(opacity)

        return f"[{input_idx}:v]{','.join(filters)}[{label}]"

    def build_overlay_filter(
        self,
        overlay: OverlayInput,
        base_label: str,
        overlay_label: str,
        output_label: str,
    ) -> str:
        kfs = overlay.keyframes
        start = overlay.clip.start_time
        x = keyframe_expression(kfs, "x", CENTER_X, start) if kfs else CENTER_X
        y = keyframe_expression(kfs, "y", CENTER_Y, start) if kfs else CENTER_Y
        enable = active_window_expression(start, overlay.clip.end_time)
        return (
            f"[{base_label}][{overlay_label}]overlay=x={x}:y={y}:eval=frame:"
            f"enable={enable}[{output_label}]"
        )

    def build_filter_script(self, overlays: list[OverlayInput]) -> str:
        """Complete filter graph; input 0 is the base video, overlay N is input N+1."""
        lines: list[str] = []
        base = "0:v"
        for idx, overlay in enumerate(overlays):
            ov_label = f"ov{idx}"
            out_label = "vout" if idx == len(overlays) - 1 else f"v{idx}"
            lines.append(self.build_overlay_chain(overlay, idx + 1, ov_label))
            lines.append(self.build_overlay_filter(overlay, base, ov_label, out_label))
            base = out_label
        return ";\n".join(lines)

    def build_command(
        self,
        base_path: str,
        overlays: list[OverlayInput],
        script_path: str,
        output_path: str,
        duration: float,
    ) -> list[str]:
        """Encoder arguments for compositing ``overlays`` over ``base_path``.

        The filter script must already be written to ``script_path``.
        """
        total = number(duration)
        args = ["-y", "-i", base_path]
        for overlay in overlays:
            args += ["-loop", "1", "-t", total, "-i", overlay.image_path]
        return args + [
            "-filter_complex_script", script_path,
            "-map", "[vout]",
            "-map", "0:a",
            "-c:v", "libx264",
            "-preset", self.profile.preset,
            "-crf", str(self.profile.crf),
            "-pix_fmt", "yuv420p",
            "-c:a", "copy",
            "-t", total,
            "-movflags", "+faststart",
            output_path,
        ]
