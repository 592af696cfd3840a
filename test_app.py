"""
Tests for the Duotone Flask API.
"""

import io
import json
import socket
from collections import namedtuple

import numpy as np
import psutil
import pytest
from PIL import Image

from app import app, lan_urls, limiter
from preview import PreviewSession


@pytest.fixture
def client():
    app.config["TESTING"] = True
    limiter.reset()
    with app.test_client() as c:
        yield c


def _make_image_bytes(width=100, height=100, color=(128, 64, 32), fmt="PNG"):
    """Return raw bytes of a simple RGB image."""
    img = Image.new("RGB", (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    buf.seek(0)
    return buf.read()


def _post(client, img_bytes, filename="test.png", **fields):
    data = {"image": (io.BytesIO(img_bytes), filename), **fields}
    return client.post("/api/process", data=data, content_type="multipart/form-data")


# ── Health endpoint ────────────────────────────────────────────────────────────

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert json.loads(resp.data) == {"ok": True}


# ── /api/process – missing / invalid input ─────────────────────────────────────

def test_process_no_image(client):
    resp = client.post("/api/process")
    assert resp.status_code == 400
    assert json.loads(resp.data)["error"] == "No image uploaded"


def test_process_invalid_filetype(client):
    resp = _post(client, b"not an image", filename="file.txt")
    assert resp.status_code == 400
    assert json.loads(resp.data)["error"] == "Only image files are allowed"


def test_process_undecodable_image(client):
    resp = _post(client, b"not an image", filename="broken.png")
    assert resp.status_code == 500
    assert "error" in json.loads(resp.data)


def test_process_upload_too_large(client, monkeypatch):
    monkeypatch.setitem(app.config, "MAX_CONTENT_LENGTH", 512)
    resp = _post(client, _make_image_bytes(width=300, height=300, fmt="BMP"), filename="big.png")
    assert resp.status_code == 413
    assert "error" in json.loads(resp.data)


# ── /api/process – successful processing ───────────────────────────────────────

def test_process_returns_png_by_default(client):
    resp = _post(client, _make_image_bytes())
    assert resp.status_code == 200
    assert resp.mimetype == "image/png"
    assert resp.headers["Cache-Control"] == "no-store"
    assert Image.open(io.BytesIO(resp.data)).format == "PNG"


def test_process_white_maps_to_highlight(client):
    resp = _post(client, _make_image_bytes(width=8, height=8, color=(255, 255, 255)))
    out = Image.open(io.BytesIO(resp.data)).convert("RGBA")
    assert set(out.getdata()) == {(247, 132, 197, 255)}


def test_process_black_maps_to_custom_shadow(client):
    resp = _post(
        client,
        _make_image_bytes(width=8, height=8, color=(0, 0, 0)),
        shadow="#102030",
        highlight="ffffff",
    )
    out = Image.open(io.BytesIO(resp.data)).convert("RGBA")
    assert set(out.getdata()) == {(16, 32, 48, 255)}


def test_process_zero_intensity_keeps_pixels(client):
    resp = _post(client, _make_image_bytes(width=8, height=8, color=(200, 50, 10)), intensity="0")
    out = Image.open(io.BytesIO(resp.data)).convert("RGB")
    assert set(out.getdata()) == {(200, 50, 10)}


def test_process_jpeg_output(client):
    resp = _post(client, _make_image_bytes(fmt="JPEG"), filename="test.jpg", format="jpg", quality="70")
    assert resp.status_code == 200
    assert resp.mimetype == "image/jpeg"
    out = Image.open(io.BytesIO(resp.data))
    assert out.format == "JPEG"
    assert out.mode == "RGB"


def test_process_webp_output(client):
    resp = _post(client, _make_image_bytes(), format="WEBP")
    assert resp.status_code == 200
    assert resp.mimetype == "image/webp"
    assert Image.open(io.BytesIO(resp.data)).format == "WEBP"


def test_process_garbage_numbers_fall_back(client):
    """Non-numeric and out-of-range parameters must not fail the request."""
    resp = _post(
        client,
        _make_image_bytes(),
        intensity="abc",
        brightness="10",
        contrast="-5",
        saturation="",
        quality="nope",
        maxSize="huge",
        shadow="not-a-colour",
    )
    assert resp.status_code == 200


def test_process_large_image_resized(client):
    resp = _post(client, _make_image_bytes(width=1500, height=600), maxSize="500")
    out = Image.open(io.BytesIO(resp.data))
    assert max(out.size) == 500


def test_process_max_size_is_clamped(client):
    resp = _post(client, _make_image_bytes(width=1000, height=400), maxSize="10")
    out = Image.open(io.BytesIO(resp.data))
    assert max(out.size) == 256


def test_process_small_image_not_resized(client):
    resp = _post(client, _make_image_bytes(width=120, height=90))
    assert Image.open(io.BytesIO(resp.data)).size == (120, 90)


def test_process_matches_preview_session(client):
    """Server and preview must produce the same pixels for the same parameters."""
    rng = np.random.default_rng(7)
    src = Image.fromarray(rng.integers(0, 256, size=(40, 50, 3), dtype=np.uint8))
    buf = io.BytesIO()
    src.save(buf, format="PNG")
    img_bytes = buf.getvalue()
    fields = dict(shadow="#203040", highlight="#FFEEAA", intensity="0.7",
                  brightness="0.1", contrast="0.3", saturation="-0.4")

    resp = _post(client, img_bytes, **fields)
    server = np.asarray(Image.open(io.BytesIO(resp.data)).convert("RGBA"))

    session = PreviewSession()
    session.load(img_bytes)
    session.update(**fields)
    local = session.frame.data.reshape(40, 50, 4)

    assert np.array_equal(server, local)


# ── LAN URLs ───────────────────────────────────────────────────────────────────

def test_lan_urls_list_non_loopback_ipv4(monkeypatch):
    addr = namedtuple("addr", "family address netmask broadcast ptp")
    table = {
        "lo": [addr(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
        "eth0": [
            addr(socket.AF_INET, "192.0.2.2", "255.255.255.0", None, None),
            addr(socket.AF_INET6, "fe80::1", None, None, None),
        ],
        "wlan0": [addr(socket.AF_INET, "10.0.0.7", "255.255.255.0", None, None)],
    }
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: table)
    assert lan_urls(3000) == ["http://192.0.2.2:3000", "http://10.0.0.7:3000"]


def test_lan_urls_empty_without_external_interfaces(monkeypatch):
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: {})
    assert lan_urls(3000) == []


# ── Rate limiting ──────────────────────────────────────────────────────────────

def test_rate_limit_rejects_request_201(client):
    for _ in range(200):
        assert client.get("/health").status_code == 200
    resp = client.get("/health")
    assert resp.status_code == 429
    assert "error" in json.loads(resp.data)


def test_rate_limit_covers_process(client):
    for _ in range(200):
        client.get("/health")
    resp = _post(client, _make_image_bytes(width=4, height=4))
    assert resp.status_code == 429
