"""
Interactive preview surface.

A :class:`PreviewSession` holds the original image, re-renders a
display-sized copy through the shared duotone pipeline whenever a parameter
changes, and exports the current frame for download.
"""

from __future__ import annotations

import base64
import dataclasses
import io
import logging
import math
import os
import re
from dataclasses import replace
from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

import settings
from duotone import FilterParams, PixelBuffer, apply_filter

logger = logging.getLogger(__name__)

SAMPLE_FONT_SIZE = 42

_STRICT_HEX_RE = re.compile(r"#[0-9A-Fa-f]{6}")

EXPORTS = {
    "png": ("PNG", "image/png", "png"),
    "jpeg": ("JPEG", "image/jpeg", "jpg"),
    "jpg": ("JPEG", "image/jpeg", "jpg"),
    "webp": ("WEBP", "image/webp", "webp"),
}


class ImageLoadError(Exception):
    """Raised when a source image cannot be decoded."""


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def fit_size(width: int, height: int, max_w: int, max_h: int) -> Tuple[int, int]:
    """Scale ``width`` x ``height`` down into the box, never up."""
    ratio = min(max_w / width, max_h / height, 1)
    return max(1, _round_half_up(width * ratio)), max(1, _round_half_up(height * ratio))


def sample_font() -> ImageFont.ImageFont:
    return ImageFont.load_default(size=SAMPLE_FONT_SIZE)


def sample_image() -> Image.Image:
    """The built-in 1024x680 demo picture: grey diagonal gradient plus a circle."""
    width, height = 1024, 680
    u = np.linspace(0.0, 1.0, width)[None, :]
    v = np.linspace(0.0, 1.0, height)[:, None]
    t = (u + v) / 2.0
    shade = np.rint(0x33 + (0xDD - 0x33) * t).astype(np.uint8)
    rgba = np.dstack([shade, shade, shade, np.full_like(shade, 255)])
    img = Image.fromarray(rgba)

    overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    cx, cy, r = 512, 340, 220
    draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=(0x99, 0x99, 0x99, 128))
    label = "Sample Image"
    font = sample_font()
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    pos = ((width - (right - left)) // 2, int(height * 0.85) - (bottom - top) // 2)
    draw.text(pos, label, fill=(0xBB, 0xBB, 0xBB, 255), font=font)
    return Image.alpha_composite(img, overlay)


class PreviewSession:
    """Keeps the original image and the latest filtered frame."""

    def __init__(self, params: Optional[FilterParams] = None,
                 max_w: int = settings.PREVIEW_MAX_W, max_h: int = settings.PREVIEW_MAX_H):
        self.params = params or FilterParams()
        self.max_w = max_w
        self.max_h = max_h
        self.original: Optional[Image.Image] = None
        self.frame: Optional[PixelBuffer] = None

    @property
    def ready(self) -> bool:
        return self.frame is not None

    # --- Sources ------------------------------------------------------------

    def load(self, source) -> Optional[PixelBuffer]:
        """Load a path, raw bytes, file object or Pillow image and render it."""
        if isinstance(source, Image.Image):
            img = source
        else:
            if isinstance(source, (bytes, bytearray)):
                source = io.BytesIO(source)
            try:
                img = Image.open(source)
                img.load()
            except OSError as exc:
                raise ImageLoadError("Failed to load image") from exc
        self.original = img.convert("RGBA")
        logger.debug("Loaded %dx%d source", *self.original.size)
        return self.render()

    def load_sample(self) -> Optional[PixelBuffer]:
        return self.load(sample_image())

    # --- Parameters ---------------------------------------------------------

    def update(self, **fields) -> Optional[PixelBuffer]:
        """Change any of the filter knobs and re-render."""
        unknown = set(fields) - {f.name for f in dataclasses.fields(FilterParams)}
        if unknown:
            raise TypeError(f"Unknown filter parameter(s): {', '.join(sorted(unknown))}")
        merged = {**dataclasses.asdict(self.params), **fields}
        self.params = FilterParams.from_mapping(merged)
        return self.render()

    def select_preset(self, shadow: str, highlight: str) -> Optional[PixelBuffer]:
        self.params = replace(self.params, shadow=shadow.upper(), highlight=highlight.upper())
        return self.render()

    def set_shadow_hex(self, value: str) -> Optional[PixelBuffer]:
        return self._set_hex("shadow", value)

    def set_highlight_hex(self, value: str) -> Optional[PixelBuffer]:
        return self._set_hex("highlight", value)

    def _set_hex(self, name: str, value: str) -> Optional[PixelBuffer]:
        if not _STRICT_HEX_RE.fullmatch(value or ""):
            return self.frame
        self.params = replace(self.params, **{name: value.upper()})
        return self.render()

    # --- Rendering ----------------------------------------------------------

    def render(self) -> Optional[PixelBuffer]:
        if self.original is None:
            return None
        size = fit_size(self.original.width, self.original.height, self.max_w, self.max_h)
        fitted = self.original if size == self.original.size else self.original.resize(size, Image.LANCZOS)
        self.frame = apply_filter(PixelBuffer.from_image(fitted), self.params)
        return self.frame

    def export(self, fmt: str = "png"):
        """Return ``(filename, mime, data)`` for the current frame, or None."""
        if self.frame is None:
            return None
        pil_format, mime, ext = EXPORTS.get(fmt.lower(), EXPORTS["png"])
        img = self.frame.to_image()
        buf = io.BytesIO()
        if pil_format == "PNG":
            img.save(buf, format="PNG")
        else:
            if pil_format == "JPEG":
                img = img.convert("RGB")
            img.save(buf, format=pil_format, quality=settings.DEFAULT_QUALITY)
        return f"{settings.EXPORT_BASENAME}.{ext}", mime, buf.getvalue()

    def export_data_url(self, fmt: str = "png") -> Optional[str]:
        exported = self.export(fmt)
        if exported is None:
            return None
        _, mime, data = exported
        return f"data:{mime};base64," + base64.b64encode(data).decode("utf-8")

    def save(self, directory, fmt: str = "png") -> Optional[str]:
        """Write the export into ``directory`` and return its path."""
        exported = self.export(fmt)
        if exported is None:
            return None
        filename, _, data = exported
        path = os.path.join(directory, filename)
        with open(path, "wb") as fh:
            fh.write(data)
        return path
