import numpy as np
import pytest
import requests

from cutout_service import raster
from cutout_service.errors import DecodeError, EncodeError, ProcessingError, SourceFetchError
from cutout_service.raster import PixelBuffer, decode_image_bytes, encode_png, load_pixel_buffer

from tests.helpers import decode, png_bytes, solid


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


def test_decode_rgb_gets_opaque_alpha():
    rgb = np.zeros((4, 6, 3), dtype=np.uint8)
    rgb[..., 1] = 77
    buffer = decode_image_bytes(png_bytes(rgb))
    assert (buffer.width, buffer.height) == (6, 4)
    assert buffer.pixels.shape == (4, 6, 4)
    assert np.all(buffer.alpha == 255)
    assert np.all(buffer.rgb[..., 1] == 77)


def test_decode_grayscale_converts_to_rgba():
    buffer = decode_image_bytes(png_bytes(solid(3, 3, (90, 90, 90)), mode="L"))
    assert buffer.pixels.shape == (3, 3, 4)
    assert np.all(buffer.rgb == 90)


@pytest.mark.parametrize("data", [b"", b"not an image", b"\x89PNG\r\n\x1a\n garbage"])
def test_decode_rejects_bad_data(data):
    with pytest.raises(DecodeError):
        decode_image_bytes(data)


def test_load_from_path(tmp_path):
    path = tmp_path / "car.png"
    path.write_bytes(png_bytes(solid(5, 2, (1, 2, 3))))
    buffer = load_pixel_buffer(path)
    assert (buffer.width, buffer.height) == (5, 2)
    assert load_pixel_buffer(str(path)).pixels.tolist() == buffer.pixels.tolist()


def test_load_missing_path_is_decode_error(tmp_path):
    with pytest.raises(DecodeError):
        load_pixel_buffer(tmp_path / "missing.png")


def test_load_from_url(monkeypatch):
    data = png_bytes(solid(2, 2, (10, 20, 30)))
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append((url, timeout))
        return FakeResponse(data)

    monkeypatch.setattr(raster.requests, "get", fake_get)
    buffer = load_pixel_buffer("https://cdn.example.com/car.png", timeout_seconds=7)
    assert calls == [("https://cdn.example.com/car.png", (5, 7))]
    assert buffer.rgb[0, 0].tolist() == [10, 20, 30]


def test_http_failure_is_distinct_fetch_error(monkeypatch):
    monkeypatch.setattr(raster.requests, "get", lambda *a, **kw: FakeResponse(status_code=403))
    with pytest.raises(SourceFetchError) as info:
        load_pixel_buffer("https://cdn.example.com/blocked.png")
    assert info.value.status_code == 403
    assert info.value.url == "https://cdn.example.com/blocked.png"
    assert isinstance(info.value, DecodeError)


def test_connection_failure_is_fetch_error(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("proxy refused")

    monkeypatch.setattr(raster.requests, "get", boom)
    with pytest.raises(SourceFetchError) as info:
        load_pixel_buffer("http://cdn.example.com/car.png")
    assert info.value.status_code is None


def test_fetched_garbage_is_plain_decode_error(monkeypatch):
    monkeypatch.setattr(raster.requests, "get", lambda *a, **kw: FakeResponse(b"<html>"))
    with pytest.raises(DecodeError) as info:
        load_pixel_buffer("https://cdn.example.com/car.png")
    assert not isinstance(info.value, SourceFetchError)


def test_encode_preserves_alpha_exactly():
    rng = np.random.default_rng(3)
    pixels = rng.integers(0, 256, size=(7, 9, 4), dtype=np.uint8)
    buffer = PixelBuffer(width=9, height=7, pixels=pixels)
    assert np.array_equal(decode(encode_png(buffer)), pixels)
    assert np.array_equal(decode_image_bytes(encode_png(buffer)).pixels, pixels)


def test_encode_failure_is_typed(monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("no encoder")

    monkeypatch.setattr(raster.Image, "fromarray", broken)
    with pytest.raises(EncodeError):
        encode_png(solid(2, 2, (0, 0, 0)))


def test_buffer_dimension_mismatch_rejected():
    with pytest.raises(ProcessingError):
        PixelBuffer(width=3, height=2, pixels=np.zeros((3, 2, 4), dtype=np.uint8))
    with pytest.raises(ProcessingError):
        PixelBuffer(width=2, height=2, pixels=np.zeros((2, 2, 3), dtype=np.uint8))
    with pytest.raises(ProcessingError):
        PixelBuffer(width=2, height=2, pixels=np.zeros((2, 2, 4), dtype=np.float32))


def test_from_array_adds_alpha_to_rgb():
    buffer = PixelBuffer.from_array(np.full((2, 3, 3), 9, dtype=np.uint8))
    assert (buffer.width, buffer.height) == (3, 2)
    assert np.all(buffer.alpha == 255)
