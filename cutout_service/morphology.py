"""Neighbor-count erosion and dilation over the boolean background mask."""

from __future__ import annotations

import logging

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .config import PipelineConfig
from .errors import ProcessingError

logger = logging.getLogger(__name__)


def neighbor_counts(mask: np.ndarray) -> np.ndarray:
    """
    Count background cells in each 3x3 neighborhood, centre included.

    The mask is edge-replicated before counting, so border pixels see their
    own row/column mirrored outward instead of phantom foreground.
    """
    padded = np.pad(mask.astype(np.uint8), 1, mode="edge")
    return sliding_window_view(padded, (3, 3)).sum(axis=(-1, -2))


def erode(mask: np.ndarray, min_neighbors: int = 5) -> np.ndarray:
    """Clear background pixels with fewer than `min_neighbors` background cells."""
    return mask & (neighbor_counts(mask) >= min_neighbors)


def dilate(mask: np.ndarray, min_neighbors: int = 6) -> np.ndarray:
    """Set pixels to background when more than `min_neighbors` cells already are."""
    return mask | (neighbor_counts(mask) > min_neighbors)


def refine_mask(mask: np.ndarray, config: PipelineConfig) -> np.ndarray:
    """
    Run the erosion passes, then the dilation passes, each exactly as many
    times as configured. Every pass reads the previous pass's complete
    output, never a half-updated mask.
    """
    if mask.ndim != 2 or mask.dtype != np.bool_:
        raise ProcessingError(f"Background mask must be a 2-D bool array, got {mask.dtype} {mask.shape}")

    before = float(mask.mean())
    for _ in range(config.erosion_passes):
        mask = erode(mask, config.erosion_min_neighbors)
    for _ in range(config.dilation_passes):
        mask = dilate(mask, config.dilation_min_neighbors)

    logger.debug(
        "morphology: %d erosion / %d dilation pass(es), background fraction %.4f -> %.4f",
        config.erosion_passes,
        config.dilation_passes,
        before,
        float(mask.mean()),
    )
    return mask
