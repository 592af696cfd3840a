"""
Duotone pixel math shared by the HTTP server and the preview session.

Both surfaces hand a :class:`PixelBuffer` to :func:`apply_filter`, which runs
the adjustment stage (brightness, contrast, saturation) and then the duotone
stage.  Every stage returns a new buffer; alpha is copied through untouched.

Intermediate results are stored as 8-bit samples between passes, rounding
half-to-even and clamping to 0..255, which is how a canvas pixel buffer
behaves.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, NamedTuple

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

# ITU-R BT.709
LUMA_R = 0.2126
LUMA_G = 0.7152
LUMA_B = 0.0722

DEFAULT_SHADOW = "#1B602F"  # Hero Green
DEFAULT_HIGHLIGHT = "#F784C5"  # Brave Pink

_HEX_RE = re.compile(r"#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})", re.IGNORECASE)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class Color(NamedTuple):
    r: int
    g: int
    b: int


def parse_hex_color(value: Any) -> Color:
    """Return the RGB triple for a 6-digit hex string; anything else is black."""
    match = _HEX_RE.fullmatch(str(value)) if value is not None else None
    if not match:
        return Color(0, 0, 0)
    return Color(*(int(part, 16) for part in match.groups()))


def _to_float(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return number


# --- Data model -------------------------------------------------------------


class PixelBuffer:
    """A ``width`` x ``height`` grid of RGBA bytes stored as one flat array."""

    def __init__(self, width: int, height: int, data: Any):
        samples = np.asarray(data, dtype=np.uint8).reshape(-1)
        if samples.size != width * height * 4:
            raise ValueError(
                f"PixelBuffer of {width}x{height} needs {width * height * 4} "
                f"samples, got {samples.size}"
            )
        self.width = int(width)
        self.height = int(height)
        self.data = samples

    @classmethod
    def from_image(cls, img: Image.Image) -> "PixelBuffer":
        rgba = img if img.mode == "RGBA" else img.convert("RGBA")
        data = np.frombuffer(rgba.tobytes(), dtype=np.uint8).copy()
        return cls(rgba.width, rgba.height, data)

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", (self.width, self.height), self.data.tobytes())

    def pixels(self) -> np.ndarray:
        """View of the samples shaped ``(height * width, 4)``."""
        return self.data.reshape(-1, 4)

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.data.copy())

    def __len__(self) -> int:
        return self.data.size

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height})"


@dataclass(frozen=True)
class AdjustmentParams:
    brightness: float = 0.0
    contrast: float = 0.0
    saturation: float = 0.0

    def __post_init__(self):
        for name in ("brightness", "contrast", "saturation"):
            value = _to_float(getattr(self, name), 0.0)
            object.__setattr__(self, name, clamp(value, -1.0, 1.0))

    @property
    def is_noop(self) -> bool:
        return self.brightness == 0 and self.contrast == 0 and self.saturation == 0


@dataclass(frozen=True)
class DuotoneParams:
    shadow: Color = field(default_factory=lambda: parse_hex_color(DEFAULT_SHADOW))
    highlight: Color = field(default_factory=lambda: parse_hex_color(DEFAULT_HIGHLIGHT))
    intensity: float = 1.0

    def __post_init__(self):
        for name in ("shadow", "highlight"):
            value = getattr(self, name)
            if isinstance(value, (tuple, list)) and len(value) == 3:
                value = Color(*(int(clamp(int(c), 0, 255)) for c in value))
            else:
                value = parse_hex_color(value)
            object.__setattr__(self, name, value)
        intensity = clamp(_to_float(self.intensity, 1.0), 0.0, 1.0)
        object.__setattr__(self, "intensity", intensity)


@dataclass(frozen=True)
class FilterParams:
    """All six user-facing knobs with their defaults."""

    shadow: str = DEFAULT_SHADOW
    highlight: str = DEFAULT_HIGHLIGHT
    intensity: float = 1.0
    brightness: float = 0.0
    contrast: float = 0.0
    saturation: float = 0.0

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "FilterParams":
        """Build params from raw form/query values, falling back to defaults.

        Empty or non-numeric numbers and empty colours use the defaults; numbers
        are clamped to their domain and malformed colours later parse as black.
        """
        shadow = values.get("shadow") or DEFAULT_SHADOW
        highlight = values.get("highlight") or DEFAULT_HIGHLIGHT
        return cls(
            shadow=str(shadow),
            highlight=str(highlight),
            intensity=clamp(_to_float(values.get("intensity"), 1.0), 0.0, 1.0),
            brightness=clamp(_to_float(values.get("brightness"), 0.0), -1.0, 1.0),
            contrast=clamp(_to_float(values.get("contrast"), 0.0), -1.0, 1.0),
            saturation=clamp(_to_float(values.get("saturation"), 0.0), -1.0, 1.0),
        )

    @property
    def adjustments(self) -> AdjustmentParams:
        return AdjustmentParams(self.brightness, self.contrast, self.saturation)

    @property
    def duotone(self) -> DuotoneParams:
        return DuotoneParams(self.shadow, self.highlight, self.intensity)


# --- Stages -----------------------------------------------------------------


# Pixels handled per pass; bounds the float64 temporaries of one stage.
CHUNK_PIXELS = 1 << 16


def _chunks(px: np.ndarray):
    for start in range(0, len(px), CHUNK_PIXELS):
        yield px[start:start + CHUNK_PIXELS]


def _store(px: np.ndarray, values: np.ndarray) -> None:
    """Write float RGB back into ``px`` the way a canvas stores it."""
    np.rint(values, out=values)
    np.clip(values, 0.0, 255.0, out=values)
    px[:, :3] = values.astype(np.uint8)


def luminance(rgb: np.ndarray) -> np.ndarray:
    """BT.709 luminance of an ``(..., 3)`` array, in the 0..255 range."""
    rgb = rgb.astype(np.float64, copy=False)
    return LUMA_R * rgb[..., 0] + LUMA_G * rgb[..., 1] + LUMA_B * rgb[..., 2]


def apply_adjustments(buf: PixelBuffer, params: AdjustmentParams) -> PixelBuffer:
    """Brightness, then contrast, then saturation on every pixel's RGB."""
    out = buf.copy()
    if params.is_noop:
        return out

    factor = (1.0 + params.contrast) ** 2
    for px in _chunks(out.pixels()):
        rgb = px[:, :3].astype(np.float64)
        rgb += params.brightness * 255.0
        np.clip(rgb, 0.0, 255.0, out=rgb)
        rgb /= 255.0
        rgb -= 0.5
        rgb *= factor
        rgb += 0.5
        rgb *= 255.0
        np.clip(rgb, 0.0, 255.0, out=rgb)
        _store(px, rgb)

        if params.saturation != 0:
            rgb = px[:, :3].astype(np.float64)
            lum = luminance(rgb)[:, None]
            rgb -= lum
            rgb *= 1.0 + params.saturation
            rgb += lum
            np.clip(rgb, 0.0, 255.0, out=rgb)
            _store(px, rgb)

    return out


def apply_duotone(buf: PixelBuffer, params: DuotoneParams) -> PixelBuffer:
    """Blend each pixel toward the shadow/highlight gradient at its luminance."""
    out = buf.copy()
    shadow = np.asarray(params.shadow, dtype=np.float64)
    highlight = np.asarray(params.highlight, dtype=np.float64)
    mix = params.intensity

    for px in _chunks(out.pixels()):
        rgb = px[:, :3].astype(np.float64)
        t = luminance(rgb)
        t /= 255.0
        t = t[:, None]
        gradient = (1.0 - t) * shadow + t * highlight
        gradient *= mix
        rgb *= 1.0 - mix
        gradient += rgb
        np.clip(gradient, 0.0, 255.0, out=gradient)
        _store(px, gradient)

    return out


def apply_filter(buf: PixelBuffer, params: FilterParams) -> PixelBuffer:
    """Run both stages in their fixed order: adjustments, then duotone."""
    logger.debug("Filtering %r with %s", buf, params)
    return apply_duotone(apply_adjustments(buf, params.adjustments), params.duotone)


def filter_image(img: Image.Image, params: FilterParams) -> Image.Image:
    """Convenience wrapper for callers that hold a Pillow image."""
    return apply_filter(PixelBuffer.from_image(img), params).to_image()
