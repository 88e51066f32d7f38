"""
FastAPI layer exposing the heuristic cutout.

Endpoints:
 - GET /health
 - POST /remove-bg          (JSON body with an image URL)
 - POST /remove-bg/upload   (raw image bytes as the request body)
"""

from __future__ import annotations

from io import BytesIO
import logging
import time
from typing import Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool
from pydantic import BaseModel, HttpUrl
from PIL import Image

from . import config
from .compositing import SHOWROOM_GRADIENT, BackdropOptions, compose_over_backdrop, parse_hex_color
from .errors import (
    CutoutError,
    DecodeError,
    PipelineTimeoutError,
    SourceFetchError,
)
from .pipeline import process_image_bytes
from .raster import decode_image_bytes, encode_png, fetch_image_bytes

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Heuristic Cutout Service", version="0.1.0")


class RemoveBgRequest(BaseModel):
    imageUrl: HttpUrl
    fallbackToOriginal: bool = False
    backgroundColor: Optional[str] = None  # "#RRGGBB"
    backgroundGradient: bool = False
    backgroundImageUrl: Optional[HttpUrl] = None
    logoUrl: Optional[HttpUrl] = None


def _download_image(url: str) -> bytes:
    return fetch_image_bytes(url, timeout_seconds=settings.request_timeout_seconds)


def _download_pil(url: str, what: str) -> Image.Image:
    """Fetch and fully decode an auxiliary image so no decoder outlives the request body."""
    try:
        data = _download_image(url)
    except SourceFetchError as exc:
        logger.exception("Failed to download %s: %s", what, exc)
        raise HTTPException(status_code=400, detail=f"Could not download {what}") from exc
    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            return image.copy()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to decode %s: %s", what, exc)
        raise HTTPException(status_code=400, detail=f"Invalid {what}") from exc


def _backdrop_options(body: RemoveBgRequest) -> Optional[BackdropOptions]:
    color = parse_hex_color(body.backgroundColor)
    if body.backgroundColor and color is None:
        raise HTTPException(status_code=400, detail="backgroundColor must be #RRGGBB")

    image = _download_pil(str(body.backgroundImageUrl), "background image") if body.backgroundImageUrl else None
    logo = _download_pil(str(body.logoUrl), "logo") if body.logoUrl else None
    if color is None and image is None and logo is None and not body.backgroundGradient:
        return None
    return BackdropOptions(
        color=color,
        gradient=SHOWROOM_GRADIENT if body.backgroundGradient else None,
        image=image,
        logo=logo,
    )


def _run_cutout(image_bytes: bytes, fallback_to_original: bool) -> Tuple[bytes, bool]:
    try:
        return process_image_bytes(image_bytes), False
    except CutoutError as exc:
        if fallback_to_original:
            logger.warning("Cutout failed, returning original image: %s", exc)
            return image_bytes, True
        if isinstance(exc, DecodeError):
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if isinstance(exc, PipelineTimeoutError):
            raise HTTPException(status_code=504, detail="Background removal timed out") from exc
        logger.exception("Cutout processing failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc


def _png_response(payload: bytes, started: float, fallback: bool) -> Response:
    elapsed_ms = int((time.monotonic() - started) * 1000)
    return Response(
        content=payload,
        media_type="image/png" if not fallback else "application/octet-stream",
        headers={
            "X-Processing-Time": f"{elapsed_ms}ms",
            "X-Cutout-Fallback": "true" if fallback else "false",
        },
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/remove-bg")
def remove_bg(body: RemoveBgRequest):
    started = time.monotonic()
    try:
        image_bytes = _download_image(str(body.imageUrl))
    except SourceFetchError as exc:
        logger.exception("Failed to download image: %s", exc)
        raise HTTPException(status_code=400, detail="Could not download image") from exc

    backdrop = _backdrop_options(body)
    png_bytes, fallback = _run_cutout(image_bytes, body.fallbackToOriginal)

    if backdrop is not None and not fallback:
        try:
            composed = compose_over_backdrop(decode_image_bytes(png_bytes), backdrop)
            png_bytes = encode_png(composed)
        except CutoutError as exc:
            logger.exception("Recompositing failed: %s", exc)
            raise HTTPException(status_code=500, detail="Recompositing failed") from exc

    return _png_response(png_bytes, started, fallback)


@app.post("/remove-bg/upload")
async def remove_bg_upload(request: Request, fallbackToOriginal: bool = False):
    started = time.monotonic()
    image_bytes = await request.body()
    if not image_bytes:
        raise HTTPException(status_code=400, detail="No file provided")
    png_bytes, fallback = await run_in_threadpool(_run_cutout, image_bytes, fallbackToOriginal)
    return _png_response(png_bytes, started, fallback)
