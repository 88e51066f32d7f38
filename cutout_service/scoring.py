"""
Background score estimation.

Each pixel accumulates an additive, uncapped score from four independent
signals (border color proximity, brightness/saturation, local texture, edge
proximity). Scores are float64 and added in a fixed order so a given image
and config always produce the same map, whether scored on one thread or in
row bands.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import List, Tuple

import numpy as np

from .config import PipelineConfig
from .errors import ProcessingError
from .raster import PixelBuffer

logger = logging.getLogger(__name__)


@dataclass
class ScoreResult:
    confidence: np.ndarray  # (H, W) float64 raw accumulated score
    mask: np.ndarray  # (H, W) bool, True = background


def _repeated_sum_table(weight: float, max_count: int) -> np.ndarray:
    """table[k] is `weight` added k times in sequence."""
    table = np.zeros(max_count + 1, dtype=np.float64)
    total = 0.0
    for k in range(1, max_count + 1):
        total += weight
        table[k] = total
    return table


def brightness_of(rgb: np.ndarray) -> np.ndarray:
    rgb = rgb.astype(np.float64)
    return (rgb[..., 0] + rgb[..., 1] + rgb[..., 2]) / 3.0


def saturation_of(rgb: np.ndarray) -> np.ndarray:
    """(max - min) / max per pixel, 0 where max is 0."""
    rgb = rgb.astype(np.float64)
    hi = rgb.max(axis=-1)
    lo = rgb.min(axis=-1)
    with np.errstate(divide="ignore", invalid="ignore"):
        sat = np.where(hi > 0, (hi - lo) / np.where(hi > 0, hi, 1.0), 0.0)
    return sat


def _texture_band(padded: np.ndarray, center: np.ndarray, y0: int, radius: int) -> np.ndarray:
    """Mean |brightness difference| to every in-bounds cell of the square window."""
    rows, width = center.shape
    total = np.zeros(center.shape, dtype=np.float64)
    count = np.zeros(center.shape, dtype=np.int32)
    for dy in range(-radius, radius + 1):
        top = y0 + radius + dy
        for dx in range(-radius, radius + 1):
            left = radius + dx
            window = padded[top : top + rows, left : left + width]
            valid = ~np.isnan(window)
            total += np.where(valid, np.abs(window - center), 0.0)
            count += valid
    return total / count


def texture_variance(brightness: np.ndarray, radius: int) -> np.ndarray:
    """Local texture measure over a (2r+1)x(2r+1) window clipped to the image."""
    padded = np.pad(brightness, radius, mode="constant", constant_values=np.nan)
    return _texture_band(padded, brightness, 0, radius)


def _score_band(
    rgb: np.ndarray,
    brightness: np.ndarray,
    padded_brightness: np.ndarray,
    colors: np.ndarray,
    counts: np.ndarray,
    color_table: np.ndarray,
    config: PipelineConfig,
    y0: int,
    y1: int,
) -> np.ndarray:
    height, width = brightness.shape
    band_rgb = rgb[y0:y1].astype(np.float64)
    band_brightness = brightness[y0:y1]

    # Color proximity: +weight for every border sample within the cutoff.
    cutoff_sq = float(config.color_distance_cutoff) ** 2
    matches = np.zeros(band_brightness.shape, dtype=np.int64)
    for color, count in zip(colors, counts):
        dist_sq = ((band_rgb - color) ** 2).sum(axis=-1)
        matches += (dist_sq < cutoff_sq) * int(count)
    score = color_table[matches]

    if config.brightness_weight:
        score = np.where(band_brightness > config.brightness_cutoff, score + config.brightness_weight, score)

    if config.saturation_weight:
        sat = saturation_of(band_rgb)
        score = np.where(sat < config.saturation_cutoff, score + config.saturation_weight, score)

    if config.texture_weight:
        variance = _texture_band(padded_brightness, band_brightness, y0, config.texture_radius)
        score = np.where(variance < config.texture_variance_cutoff, score + config.texture_weight, score)

    if config.edge_proximity_weight:
        ys = np.arange(y0, y1)[:, None]
        xs = np.arange(width)[None, :]
        edge_dist = np.minimum(np.minimum(xs, width - 1 - xs), np.minimum(ys, height - 1 - ys))
        score = np.where(edge_dist < config.edge_proximity_cutoff, score + config.edge_proximity_weight, score)

    return score


def _row_bands(height: int, workers: int) -> List[Tuple[int, int]]:
    workers = max(1, min(workers, height))
    edges = np.linspace(0, height, workers + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def estimate_background(
    buffer: PixelBuffer,
    samples: np.ndarray,
    config: PipelineConfig,
) -> ScoreResult:
    """
    Score every pixel and threshold into a background mask.

    Neighborhood windows are clipped at the image border, so pixels close to
    the edge are scored from the cells that exist rather than skipped.
    """
    samples = np.asarray(samples)
    if samples.ndim != 2 or samples.shape[1] != 3 or len(samples) == 0:
        raise ProcessingError(f"Border samples must be a non-empty (N, 3) array, got {samples.shape}")

    rgb = buffer.rgb
    if rgb.shape[:2] != (buffer.height, buffer.width):
        raise ProcessingError("Pixel buffer does not match its declared dimensions")

    colors, counts = np.unique(samples.astype(np.float64), axis=0, return_counts=True)
    color_table = _repeated_sum_table(config.color_match_weight, len(samples))

    brightness = brightness_of(rgb)
    padded = np.pad(brightness, config.texture_radius, mode="constant", constant_values=np.nan)

    confidence = np.empty((buffer.height, buffer.width), dtype=np.float64)
    bands = _row_bands(buffer.height, config.score_workers)

    def run(band: Tuple[int, int]) -> None:
        y0, y1 = band
        confidence[y0:y1] = _score_band(
            rgb, brightness, padded, colors, counts, color_table, config, y0, y1
        )

    if len(bands) == 1:
        run(bands[0])
    else:
        with ThreadPoolExecutor(max_workers=len(bands)) as pool:
            # list() re-raises the first worker exception here
            list(pool.map(run, bands))

    mask = confidence > config.background_threshold
    logger.debug(
        "score estimator: %d samples (%d distinct), %d band(s), background fraction=%.4f",
        len(samples),
        len(colors),
        len(bands),
        float(mask.mean()),
    )
    return ScoreResult(confidence=confidence, mask=mask)
