"""
High-level heuristic cutout pipeline.

`process_image_bytes` is the main entry point used by the HTTP API, the batch
runner and the local scripts. Orchestration is strictly linear:
bytes in -> border samples -> background scores -> morphology -> feathered
alpha -> RGBA PNG bytes out. Each stage finishes before the next one reads
the buffer or mask, and cancellation/timeout are checked between stages.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import threading
from time import monotonic
from typing import Optional, Tuple

import cv2
import numpy as np

from . import config
from .config import PipelineConfig
from .errors import CutoutError, PipelineCancelledError, PipelineTimeoutError
from .feathering import feather_alpha
from .morphology import refine_mask
from .raster import ImageSource, PixelBuffer, decode_image_bytes, encode_png, load_pixel_buffer
from .sampling import sample_border
from .scoring import estimate_background

logger = logging.getLogger(__name__)


@dataclass
class SegmentationResult:
    buffer: PixelBuffer
    samples: np.ndarray
    confidence: np.ndarray
    initial_mask: np.ndarray
    mask: np.ndarray
    feathered_pixels: int

    @property
    def background_fraction(self) -> float:
        return float(self.mask.mean())


class _RunGuard:
    """Cooperative cancellation and wall-clock budget, checked between stages."""

    def __init__(self, cancel_event: Optional[threading.Event], timeout_seconds: Optional[float]):
        self.cancel_event = cancel_event
        self.timeout_seconds = timeout_seconds
        self.started = monotonic()

    def check(self, stage: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelledError(f"Cutout cancelled before {stage}")
        if self.timeout_seconds is not None:
            elapsed = monotonic() - self.started
            if elapsed > self.timeout_seconds:
                raise PipelineTimeoutError(
                    f"Cutout exceeded {self.timeout_seconds:.2f}s before {stage}", elapsed
                )


def _resolve(
    pipeline_config: Optional[PipelineConfig], timeout_seconds: Optional[float]
) -> Tuple[config.Settings, PipelineConfig, Optional[float]]:
    settings = config.get_settings()
    pipeline_config = pipeline_config or config.pipeline_config_from_settings(settings)
    if timeout_seconds is None:
        timeout_seconds = settings.pipeline_timeout_seconds
    return settings, pipeline_config, timeout_seconds


def _run_stages(buffer: PixelBuffer, pipeline_config: PipelineConfig, guard: _RunGuard) -> SegmentationResult:
    guard.check("border sampling")
    samples = sample_border(buffer, pipeline_config.border_sample_stride)

    guard.check("background scoring")
    scores = estimate_background(buffer, samples, pipeline_config)

    guard.check("mask refinement")
    mask = refine_mask(scores.mask, pipeline_config)

    guard.check("edge feathering")
    feathered = feather_alpha(buffer, mask, pipeline_config)

    return SegmentationResult(
        buffer=buffer,
        samples=samples,
        confidence=scores.confidence,
        initial_mask=scores.mask,
        mask=mask,
        feathered_pixels=feathered,
    )


def segment_buffer(
    buffer: PixelBuffer,
    pipeline_config: Optional[PipelineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout_seconds: Optional[float] = None,
) -> SegmentationResult:
    """
    Run the pixel stages on `buffer`, writing alpha into it in place.

    The caller hands over exclusive ownership for the duration of the call.
    """
    settings, pipeline_config, timeout_seconds = _resolve(pipeline_config, timeout_seconds)
    guard = _RunGuard(cancel_event, timeout_seconds)
    result = _run_stages(buffer, pipeline_config, guard)
    if settings.debug:
        _maybe_dump_debug(result, Path(settings.debug_output_dir))
    return result


def _finish(
    buffer: PixelBuffer,
    pipeline_config: PipelineConfig,
    guard: _RunGuard,
    settings: config.Settings,
) -> bytes:
    result = _run_stages(buffer, pipeline_config, guard)
    logger.debug(
        "cutout %dx%d: background %.2f%% (initial %.2f%%), feathered=%d",
        buffer.width,
        buffer.height,
        result.background_fraction * 100.0,
        float(result.initial_mask.mean()) * 100.0,
        result.feathered_pixels,
    )
    if settings.debug:
        _maybe_dump_debug(result, Path(settings.debug_output_dir))

    guard.check("encoding")
    return encode_png(buffer)


def process_image_bytes(
    image_bytes: bytes,
    pipeline_config: Optional[PipelineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout_seconds: Optional[float] = None,
) -> bytes:
    """
    Full pipeline from raw bytes to RGBA PNG bytes.

    Raises:
        DecodeError: when the input is not a readable image.
        ProcessingError: on invariant violations, cancellation or timeout.
        EncodeError: when the PNG cannot be written.
    """
    settings, pipeline_config, timeout_seconds = _resolve(pipeline_config, timeout_seconds)
    guard = _RunGuard(cancel_event, timeout_seconds)
    buffer = decode_image_bytes(image_bytes)
    return _finish(buffer, pipeline_config, guard, settings)


def process_source(
    source: ImageSource,
    pipeline_config: Optional[PipelineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout_seconds: Optional[float] = None,
) -> bytes:
    """Like `process_image_bytes` but accepts a path or http(s) URL too."""
    settings, pipeline_config, timeout_seconds = _resolve(pipeline_config, timeout_seconds)
    guard = _RunGuard(cancel_event, timeout_seconds)
    buffer = load_pixel_buffer(source, timeout_seconds=settings.request_timeout_seconds)
    return _finish(buffer, pipeline_config, guard, settings)


def process_with_fallback(
    image_bytes: bytes,
    pipeline_config: Optional[PipelineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout_seconds: Optional[float] = None,
) -> Tuple[bytes, bool]:
    """
    Opt-in caller policy: return the unprocessed input when the cutout fails.

    Returns:
        (image bytes, processed) where `processed` is False when the original
        bytes were handed back.
    """
    try:
        return process_image_bytes(image_bytes, pipeline_config, cancel_event, timeout_seconds), True
    except CutoutError as exc:
        logger.warning("cutout failed, returning original image: %s", exc)
        return image_bytes, False


def _maybe_dump_debug(result: SegmentationResult, debug_dir: Path) -> None:
    """Optionally write debug visualizations when DEBUG is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        peak = float(result.confidence.max()) or 1.0
        confidence_u8 = np.clip(result.confidence / peak * 255.0, 0, 255).astype(np.uint8)
        cv2.imwrite(str(debug_dir / "confidence.png"), confidence_u8)
        cv2.imwrite(str(debug_dir / "mask.png"), result.mask.astype(np.uint8) * 255)

        overlay = result.buffer.rgb.copy()
        overlay[result.mask] = [255, 0, 0]  # background in red (RGB)
        cv2.imwrite(str(debug_dir / "mask_overlay.png"), cv2.cvtColor(overlay, cv2.COLOR_RGB2BGR))
        logger.debug("pipeline: wrote debug outputs to %s", debug_dir)
    except Exception as exc:  # noqa: BLE001
        logger.warning("pipeline: failed to write debug outputs: %s", exc)
