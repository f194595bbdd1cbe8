"""Rasterise text overlay clips to transparent PNGs with Pillow.

The PNG is composited by the same overlay chain as image clips, so the
keyframed position, scale, rotation and opacity are applied by the encoder
and not baked into the image.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from PIL import Image, ImageDraw, ImageFont

from rampcut.config import get_settings

logger = logging.getLogger(__name__)

RGBA = tuple[int, int, int, int]

_RGBA_FUNC = re.compile(r"rgba?\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*(?:,\s*([\d.]+)\s*)?\)")


def parse_color(value: str | None, default: RGBA = (255, 255, 255, 255)) -> RGBA | None:
    """Parse ``#rgb``, ``#rrggbb``, ``#rrggbbaa`` or ``rgba(r,g,b,a)``.

    Returns None for ``transparent``; unparseable values fall back to ``default``.
    """
    if value is None:
        return default
    value = value.strip()
    if value == "transparent":
        return None

    match = _RGBA_FUNC.fullmatch(value)
    if match:
        r, g, b, a = match.groups()
        alpha = int(float(a) * 255) if a is not None else 255
        return (int(float(r)), int(float(g)), int(float(b)), alpha)

    hex_color = value.lstrip("#")
    if len(hex_color) == 3:
        hex_color = "".join(c * 2 for c in hex_color)
    if len(hex_color) not in (6, 8):
        logger.warning(f"[TEXT] Unrecognised color {value!r}, using default")
        return default
    try:
        r = int(hex_color[0:2], 16)
        g = int(hex_color[2:4], 16)
        b = int(hex_color[4:6], 16)
        alpha = int(hex_color[6:8], 16) if len(hex_color) == 8 else 255
    except ValueError:
        logger.warning(f"[TEXT] Unrecognised color {value!r}, using default")
        return default
    return (r, g, b, alpha)


@dataclass
class TextStyle:
    """Text styling read from a text clip's ``properties``."""

    text: str = "Text"
    font_size: int = 48
    color: str = "#ffffff"
    background_color: str = "transparent"
    line_height: float = 1.3

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "TextStyle":
        return cls(
            text=str(properties.get("text") or "Text"),
            font_size=max(1, int(properties.get("fontSize") or 48)),
            color=properties.get("color") or "#ffffff",
            background_color=properties.get("backgroundColor") or "transparent",
        )


class TextRenderer:
    """Renders text overlay clips to RGBA PNG files."""

    def __init__(self, font_path: str | None = None):
        self.font_path = font_path or get_settings().overlay_font_path
        self._fonts: dict[int, ImageFont.ImageFont | ImageFont.FreeTypeFont] = {}

    def _font(self, size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
        if size not in self._fonts:
            try:
                self._fonts[size] = ImageFont.truetype(self.font_path, size)
            except OSError:
                logger.warning(f"[TEXT] Font not loadable at {self.font_path}, using PIL default")
                self._fonts[size] = ImageFont.load_default()
        return self._fonts[size]

    def render(self, style: TextStyle, output_path: str) -> Path:
        """Draw ``style.text`` (multi-line allowed) onto a tightly sized transparent image."""
        font = self._font(style.font_size)
        text_rgba = parse_color(style.color) or (0, 0, 0, 0)
        bg_rgba = parse_color(style.background_color, default=(0, 0, 0, 0))

        lines = style.text.split("\n")
        line_px = int(style.font_size * style.line_height)
        widths = []
        for line in lines:
            bbox = font.getbbox(line or " ")
            widths.append(bbox[2] - bbox[0])

        padding = 8 if bg_rgba and bg_rgba[3] > 0 else 2
        img_width = max(widths) + padding * 2
        img_height = line_px * len(lines) + padding * 2

        img = Image.new("RGBA", (int(img_width), int(img_height)), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        if bg_rgba and bg_rgba[3] > 0:
            draw.rectangle([(0, 0), (img_width - 1, img_height - 1)], fill=bg_rgba)

        y_offset = padding
        for line, width in zip(lines, widths):
            x_offset = (img_width - width) / 2
            draw.text((x_offset, y_offset), line, font=font, fill=text_rgba)
            y_offset += line_px

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        img.save(output_path, "PNG")
        logger.info(f"[TEXT] Generated PNG: {output_path} ({img.size[0]}x{img.size[1]})")
        return Path(output_path)

    def render_clip(self, properties: Mapping[str, Any], output_path: str) -> Path:
        return self.render(TextStyle.from_properties(properties), output_path)
