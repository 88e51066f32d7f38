"""
Raster loading and encoding.

The loader turns bytes, a file path or an http(s) URL into a `PixelBuffer`
(an H x W x 4 uint8 RGBA array). The encoder serializes a finished buffer to
PNG so the alpha channel survives exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image
import requests

from .errors import DecodeError, EncodeError, ProcessingError, SourceFetchError

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path]

FETCH_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
}


@dataclass
class PixelBuffer:
    width: int
    height: int
    pixels: np.ndarray  # (height, width, 4) uint8, RGBA

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ProcessingError(f"Image must be at least 1x1, got {self.width}x{self.height}")
        expected = (self.height, self.width, 4)
        if self.pixels.shape != expected:
            raise ProcessingError(
                f"Pixel buffer shape {self.pixels.shape} does not match declared {expected}"
            )
        if self.pixels.dtype != np.uint8:
            raise ProcessingError(f"Pixel buffer must be uint8, got {self.pixels.dtype}")

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "PixelBuffer":
        """Wrap an RGB or RGBA array; RGB input gets a fully opaque alpha channel."""
        pixels = np.asarray(pixels)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ProcessingError(f"Expected an HxWx3 or HxWx4 array, got shape {pixels.shape}")
        if pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
            pixels = np.concatenate([pixels.astype(np.uint8), alpha], axis=2)
        pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
        return cls(width=pixels.shape[1], height=pixels.shape[0], pixels=pixels)

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[..., :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.pixels.copy())


def _is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


def fetch_image_bytes(url: str, timeout_seconds: float = 30) -> bytes:
    """
    Download a remote image.

    Raises:
        SourceFetchError: on connection problems or a non-2xx response.
    """
    try:
        resp = requests.get(url, headers=FETCH_HEADERS, timeout=(5, timeout_seconds))
        resp.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise SourceFetchError(f"Failed to fetch image: HTTP {status}", url, status) from exc
    except requests.RequestException as exc:
        raise SourceFetchError(f"Failed to fetch image: {exc}", url) from exc
    logger.debug("fetched %s (%d bytes)", url, len(resp.content))
    return resp.content


def decode_image_bytes(image_bytes: bytes) -> PixelBuffer:
    """Decode any Pillow-readable format into an RGBA buffer."""
    if not image_bytes:
        raise DecodeError("Empty image data")
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            rgba = image.convert("RGBA")
    except Exception as exc:  # noqa: BLE001
        raise DecodeError("Invalid image data") from exc

    pixels = np.array(rgba, dtype=np.uint8)
    return PixelBuffer(width=rgba.width, height=rgba.height, pixels=pixels)


def load_pixel_buffer(source: ImageSource, timeout_seconds: float = 30) -> PixelBuffer:
    """
    Load an image source into a fresh, exclusively owned PixelBuffer.

    `source` may be raw bytes, a local path, or an http(s) URL. Remote
    failures raise `SourceFetchError`; everything else that cannot be read
    raises `DecodeError`.
    """
    if isinstance(source, (bytes, bytearray)):
        return decode_image_bytes(bytes(source))

    if isinstance(source, str) and _is_url(source):
        return decode_image_bytes(fetch_image_bytes(source, timeout_seconds=timeout_seconds))

    path = Path(source)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Could not read image file {path}") from exc
    return decode_image_bytes(data)


def encode_png(buffer: PixelBuffer, optimize: bool = False) -> bytes:
    """Serialize to PNG, keeping RGB and alpha exactly as they are."""
    try:
        out = Image.fromarray(buffer.pixels)
        buf = BytesIO()
        out.save(buf, format="PNG", optimize=optimize)
    except Exception as exc:  # noqa: BLE001
        raise EncodeError("Failed to encode PNG") from exc
    return buf.getvalue()


def to_pil(buffer: PixelBuffer, mode: Optional[str] = None) -> Image.Image:
    image = Image.fromarray(buffer.pixels)
    return image.convert(mode) if mode else image
