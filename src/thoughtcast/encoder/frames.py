"""Rasterizes terminal snapshots into raw frames for the encoder.

Frames are rgb24 byte strings of exactly width * height * 3 bytes, the
layout the encoder reads from stdin. Only the most recent lines that fit
on screen are drawn.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)


class FrameRenderer:
    """Draws terminal lines onto a fixed-size canvas."""

    def __init__(
        self,
        width: int = 1280,
        height: int = 720,
        font_size: int = 16,
        bg_color: tuple[int, int, int] = (0, 0, 0),
        fg_color: tuple[int, int, int] = (51, 255, 102),
        padding: int = 20,
    ) -> None:
        self._width = width
        self._height = height
        self._bg_color = bg_color
        self._fg_color = fg_color
        self._padding = padding
        self._font_size = 0
        self._font: ImageFont.ImageFont | ImageFont.FreeTypeFont = ImageFont.load_default()
        self._line_height = 1
        self.set_font_size(font_size)

    @property
    def frame_size(self) -> int:
        return self._width * self._height * 3

    @property
    def rows(self) -> int:
        """How many lines fit on the canvas."""
        return max(1, (self._height - 2 * self._padding) // self._line_height)

    def set_font_size(self, font_size: int) -> None:
        if font_size == self._font_size:
            return
        self._font_size = font_size
        self._font = ImageFont.load_default(size=font_size)
        self._line_height = int(font_size * 1.25) or 1
        logger.debug("Renderer font size %d (%d rows)", font_size, self.rows)

    def render(self, lines: Sequence[str]) -> bytes:
        image = Image.new("RGB", (self._width, self._height), self._bg_color)
        draw = ImageDraw.Draw(image)
        for i, line in enumerate(lines[-self.rows:]):
            if line:
                y = self._padding + i * self._line_height
                draw.text((self._padding, y), line, fill=self._fg_color, font=self._font)
        return image.tobytes()
