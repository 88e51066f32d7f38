"""Border color sampling: raw evidence of what the backdrop looks like."""

from __future__ import annotations

import logging

import numpy as np

from .raster import PixelBuffer

logger = logging.getLogger(__name__)


def sample_border(buffer: PixelBuffer, stride: int = 5) -> np.ndarray:
    """
    Collect RGB samples along the four image edges.

    Walks the top and bottom rows, then the left and right columns, every
    `stride` pixels. When the image is narrower or shorter than the stride
    the four corners are appended if the walk missed them, so the result is
    never empty.

    Returns:
        Read-only (N, 3) uint8 array of (r, g, b) samples, in walk order.
    """
    if stride < 1:
        raise ValueError("stride must be >= 1")

    rgb = buffer.rgb
    w, h = buffer.width, buffer.height
    xs = range(0, w, stride)
    ys = range(0, h, stride)

    coords = [(0, x) for x in xs]
    coords += [(h - 1, x) for x in xs]
    coords += [(y, 0) for y in ys]
    coords += [(y, w - 1) for y in ys]

    if w < stride or h < stride:
        seen = set(coords)
        for corner in ((0, 0), (0, w - 1), (h - 1, 0), (h - 1, w - 1)):
            if corner not in seen:
                coords.append(corner)
                seen.add(corner)

    rows = np.array([c[0] for c in coords], dtype=np.intp)
    cols = np.array([c[1] for c in coords], dtype=np.intp)
    samples = np.ascontiguousarray(rgb[rows, cols])
    samples.setflags(write=False)
    logger.debug("border sampler: %d samples (stride=%d, %dx%d)", len(samples), stride, w, h)
    return samples
