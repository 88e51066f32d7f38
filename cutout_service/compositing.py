"""
Recompositing a cutout over a new backdrop.

Backdrop precedence: image, then gradient, then solid color, then white. An
optional logo sits between the backdrop and the vehicle at reduced opacity.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from .raster import PixelBuffer

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]
GradientStops = Sequence[Tuple[float, RGB]]

SHOWROOM_GRADIENT: GradientStops = (
    (0.0, (0x1A, 0x1A, 0x2E)),
    (0.5, (0x16, 0x21, 0x3E)),
    (1.0, (0x0F, 0x34, 0x60)),
)
DEFAULT_BACKDROP_COLOR: RGB = (255, 255, 255)


@dataclass
class BackdropOptions:
    color: Optional[RGB] = None
    gradient: Optional[GradientStops] = None
    image: Optional[Image.Image] = None
    logo: Optional[Image.Image] = None
    logo_scale: float = 0.4
    logo_opacity: float = 0.3


def parse_hex_color(value: Optional[str]) -> Optional[RGB]:
    if not value:
        return None
    raw = value.strip()
    if raw.startswith("#"):
        raw = raw[1:]
    if len(raw) != 6:
        return None
    try:
        r = int(raw[0:2], 16)
        g = int(raw[2:4], 16)
        b = int(raw[4:6], 16)
        return (r, g, b)
    except ValueError:
        return None


def linear_gradient(width: int, height: int, stops: GradientStops = SHOWROOM_GRADIENT) -> np.ndarray:
    """
    Corner-to-corner gradient from (0, 0) to (width, height).

    Each pixel is projected onto the diagonal and colored by piecewise linear
    interpolation between the stops.
    """
    if not stops:
        raise ValueError("gradient needs at least one stop")
    positions = np.array([s[0] for s in stops], dtype=np.float64)
    colors = np.array([s[1] for s in stops], dtype=np.float64)

    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    t = (xs * width + ys * height) / float(width * width + height * height)

    out = np.empty((height, width, 3), dtype=np.uint8)
    for c in range(3):
        out[..., c] = np.clip(np.rint(np.interp(t, positions, colors[:, c])), 0, 255)
    return out


def _backdrop_rgb(width: int, height: int, options: BackdropOptions) -> np.ndarray:
    if options.image is not None:
        bg = np.array(options.image.convert("RGB")).astype(np.uint8)
        if bg.shape[:2] != (height, width):
            bg = cv2.resize(bg, (width, height), interpolation=cv2.INTER_LINEAR)
        return bg
    if options.gradient is not None:
        return linear_gradient(width, height, options.gradient)
    color = options.color or DEFAULT_BACKDROP_COLOR
    bg = np.zeros((height, width, 3), dtype=np.uint8)
    bg[...] = color
    return bg


def _logo_layer(width: int, height: int, options: BackdropOptions) -> Image.Image:
    logo = options.logo.convert("RGBA")
    logo_w = max(1, int(round(logo.width * options.logo_scale)))
    logo_h = max(1, int(round(logo.height * options.logo_scale)))
    logo = logo.resize((logo_w, logo_h), Image.BILINEAR)

    logo_np = np.array(logo)
    opacity = float(np.clip(options.logo_opacity, 0.0, 1.0))
    logo_np[..., 3] = np.rint(logo_np[..., 3].astype(np.float64) * opacity).astype(np.uint8)

    layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    left = (width - logo_w) // 2
    top = (height - logo_h) // 2
    layer.paste(Image.fromarray(logo_np), (left, top))
    return layer


def compose_over_backdrop(cutout: PixelBuffer, options: Optional[BackdropOptions] = None) -> PixelBuffer:
    """Place the cutout (alpha already applied) over a fresh opaque backdrop."""
    options = options or BackdropOptions()
    width, height = cutout.width, cutout.height

    bg = _backdrop_rgb(width, height, options)
    alpha = np.full((height, width, 1), 255, dtype=np.uint8)
    canvas = Image.fromarray(np.concatenate([bg, alpha], axis=2))

    if options.logo is not None:
        canvas = Image.alpha_composite(canvas, _logo_layer(width, height, options))

    canvas = Image.alpha_composite(canvas, Image.fromarray(cutout.pixels))
    logger.debug(
        "compositing: %dx%d backdrop=%s logo=%s",
        width,
        height,
        "image" if options.image is not None else "gradient" if options.gradient is not None else "color",
        options.logo is not None,
    )
    return PixelBuffer.from_array(np.array(canvas))
