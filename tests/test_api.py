import numpy as np
import pytest
from fastapi.testclient import TestClient

from cutout_service import api
from cutout_service.errors import SourceFetchError
from cutout_service.pipeline import process_image_bytes

from tests.helpers import decode, framed_block, png_bytes, solid


@pytest.fixture
def client():
    return TestClient(api.app)


@pytest.fixture
def car_png():
    return png_bytes(framed_block())


def _serve(monkeypatch, mapping):
    def fake_download(url):
        if url not in mapping:
            raise SourceFetchError("Failed to fetch image: HTTP 404", url, 404)
        return mapping[url]

    monkeypatch.setattr(api, "_download_image", fake_download)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_returns_cutout(client, car_png):
    resp = client.post("/remove-bg/upload", content=car_png)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["x-cutout-fallback"] == "false"
    assert resp.headers["x-processing-time"].endswith("ms")
    assert resp.content == process_image_bytes(car_png)


def test_upload_rejects_empty_body(client):
    assert client.post("/remove-bg/upload", content=b"").status_code == 400


def test_upload_rejects_non_image(client):
    resp = client.post("/remove-bg/upload", content=b"plain text")
    assert resp.status_code == 400


def test_upload_fallback_returns_original(client):
    resp = client.post("/remove-bg/upload", content=b"plain text", params={"fallbackToOriginal": "true"})
    assert resp.status_code == 200
    assert resp.headers["x-cutout-fallback"] == "true"
    assert resp.content == b"plain text"


def test_remove_bg_from_url(client, monkeypatch, car_png):
    _serve(monkeypatch, {"https://cdn.example.com/car.png": car_png})
    resp = client.post("/remove-bg", json={"imageUrl": "https://cdn.example.com/car.png"})
    assert resp.status_code == 200
    out = decode(resp.content)
    assert out.shape == (20, 20, 4)
    assert out[0, 0, 3] == 0
    assert out[10, 10, 3] == 255


def test_remove_bg_download_failure(client, monkeypatch):
    _serve(monkeypatch, {})
    resp = client.post("/remove-bg", json={"imageUrl": "https://cdn.example.com/gone.png"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Could not download image"


def test_remove_bg_over_color(client, monkeypatch, car_png):
    _serve(monkeypatch, {"https://cdn.example.com/car.png": car_png})
    resp = client.post(
        "/remove-bg",
        json={"imageUrl": "https://cdn.example.com/car.png", "backgroundColor": "#000000"},
    )
    assert resp.status_code == 200
    out = decode(resp.content)
    assert np.all(out[..., 3] == 255)
    assert out[0, 0, :3].tolist() == [0, 0, 0]
    assert out[10, 10, :3].tolist() == [220, 20, 20]


def test_remove_bg_over_image_with_logo(client, monkeypatch, car_png):
    _serve(
        monkeypatch,
        {
            "https://cdn.example.com/car.png": car_png,
            "https://cdn.example.com/studio.png": png_bytes(solid(8, 8, (0, 0, 255))),
            "https://cdn.example.com/logo.png": png_bytes(solid(10, 10, (255, 255, 0))),
        },
    )
    resp = client.post(
        "/remove-bg",
        json={
            "imageUrl": "https://cdn.example.com/car.png",
            "backgroundImageUrl": "https://cdn.example.com/studio.png",
            "logoUrl": "https://cdn.example.com/logo.png",
        },
    )
    assert resp.status_code == 200
    out = decode(resp.content)
    assert out[0, 0].tolist() == [0, 0, 255, 255]


def test_remove_bg_bad_color(client, monkeypatch, car_png):
    _serve(monkeypatch, {"https://cdn.example.com/car.png": car_png})
    resp = client.post(
        "/remove-bg",
        json={"imageUrl": "https://cdn.example.com/car.png", "backgroundColor": "red"},
    )
    assert resp.status_code == 400


def test_remove_bg_missing_logo(client, monkeypatch, car_png):
    _serve(monkeypatch, {"https://cdn.example.com/car.png": car_png})
    resp = client.post(
        "/remove-bg",
        json={"imageUrl": "https://cdn.example.com/car.png", "logoUrl": "https://cdn.example.com/x.png"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Could not download logo"


@pytest.mark.parametrize(
    "field, what",
    [("backgroundImageUrl", "background image"), ("logoUrl", "logo")],
)
def test_remove_bg_truncated_backdrop_is_rejected(client, monkeypatch, car_png, field, what):
    truncated = png_bytes(solid(64, 64, (0, 128, 255)))[:60]
    _serve(
        monkeypatch,
        {
            "https://cdn.example.com/car.png": car_png,
            "https://cdn.example.com/broken.png": truncated,
        },
    )
    resp = client.post(
        "/remove-bg",
        json={"imageUrl": "https://cdn.example.com/car.png", field: "https://cdn.example.com/broken.png"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == f"Invalid {what}"


def test_download_pil_returns_loaded_detached_image(monkeypatch):
    _serve(monkeypatch, {"https://cdn.example.com/logo.png": png_bytes(solid(6, 4, (255, 255, 0)))})
    image = api._download_pil("https://cdn.example.com/logo.png", "logo")
    assert image.size == (6, 4)
    assert getattr(image, "fp", None) is None
    assert image.convert("RGB").getpixel((0, 0)) == (255, 255, 0)


def test_remove_bg_timeout_maps_to_504(client, monkeypatch, car_png):
    _serve(monkeypatch, {"https://cdn.example.com/car.png": car_png})
    monkeypatch.setenv("PIPELINE_TIMEOUT_SECONDS", "0.000001")

    clock = iter(range(0, 10_000, 10))
    monkeypatch.setattr("cutout_service.pipeline.monotonic", lambda: next(clock))
    resp = client.post("/remove-bg", json={"imageUrl": "https://cdn.example.com/car.png"})
    assert resp.status_code == 504
