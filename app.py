"""
Duotone API
Python/Flask backend using Pillow for decoding/encoding and the shared
duotone pipeline for the pixel math.

Endpoints:
  POST /api/process  – Accept an image + duotone parameters, return the filtered image.
  GET  /health       – Liveness check.
  GET  /             – Static frontend from ``public/`` when present.
"""

import io
import ipaddress
import logging
import socket

import psutil
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from PIL import Image

import settings
from duotone import FilterParams, clamp, filter_image
from logging_utils import configure_logging

logger = logging.getLogger(__name__)

app = Flask(__name__, static_folder="public", static_url_path="")
CORS(app, origins=settings.ALLOWED_ORIGINS or "*")
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[settings.RATE_LIMIT],
    storage_uri="memory://",
)

app.config["MAX_CONTENT_LENGTH"] = int(settings.MAX_UPLOAD_MB * 1024 * 1024)

FORMATS = {
    "png": ("PNG", "image/png"),
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "webp": ("WEBP", "image/webp"),
}


def _allowed(mimetype: str) -> bool:
    return (mimetype or "").lower() in settings.ALLOWED_MIMETYPES


def _parse_int(value, default: int) -> int:
    """Integer form field; empty, zero or garbage falls back to ``default``."""
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return number or default


def _encode(img: Image.Image, fmt: str, quality: int):
    pil_format, mime = FORMATS.get(fmt, FORMATS["png"])
    buf = io.BytesIO()
    if pil_format == "JPEG":
        img.convert("RGB").save(buf, format="JPEG", quality=quality)
    elif pil_format == "WEBP":
        img.save(buf, format="WEBP", quality=quality)
    else:
        img.save(buf, format="PNG")
    return buf.getvalue(), mime


@app.route("/api/process", methods=["POST"])
def process_image():
    """Accept an uploaded image plus duotone parameters and return the
    filtered image bytes in the requested format."""

    if "image" not in request.files:
        return jsonify({"error": "No image uploaded"}), 400

    file = request.files["image"]
    if not _allowed(file.mimetype):
        return jsonify({"error": "Only image files are allowed"}), 400

    try:
        # --- Parse parameters ------------------------------------------------
        params = FilterParams.from_mapping(request.form)
        fmt = request.form.get("format", "png").lower()
        quality = int(clamp(_parse_int(request.form.get("quality"), settings.DEFAULT_QUALITY), 1, 100))
        max_edge = int(clamp(
            _parse_int(request.form.get("maxSize"), settings.DEFAULT_MAX_EDGE),
            settings.MIN_MAX_EDGE,
            settings.MAX_MAX_EDGE,
        ))

        # --- Load & optionally resize ----------------------------------------
        img = Image.open(file.stream)
        img.load()
        if max(img.size) > max_edge:
            img.thumbnail((max_edge, max_edge), Image.LANCZOS)

        # --- Adjust + duotone ------------------------------------------------
        img = filter_image(img, params)

        # --- Encode result ---------------------------------------------------
        data, mime = _encode(img, fmt, quality)
        logger.info(
            "Processed %s (%dx%d) -> %s, %d bytes", file.filename, img.width, img.height, mime, len(data)
        )
        return Response(data, mimetype=mime, headers={"Cache-Control": "no-store"})

    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Processing failed for %s", file.filename)
        return jsonify({"error": str(exc) or "Processing failed"}), 500


@app.errorhandler(413)
def upload_too_large(_exc):
    return jsonify({"error": f"File too large (max {settings.MAX_UPLOAD_MB:g} MB)"}), 413


@app.errorhandler(429)
def rate_limited(exc):
    return jsonify({"error": f"Too many requests ({exc.description})"}), 429


@app.route("/health", methods=["GET"])
def health():
    return jsonify({"ok": True})


@app.route("/", methods=["GET"])
def index():
    return app.send_static_file("index.html")


@app.after_request
def no_store_static(response):
    if request.endpoint in ("static", "index"):
        response.headers["Cache-Control"] = "no-store"
    return response


def lan_urls(port: int):
    """``http://`` URLs for every non-loopback IPv4 address, interface by interface."""
    urls = []
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not ipaddress.ip_address(addr.address).is_loopback:
                urls.append(f"http://{addr.address}:{port}")
    return urls


if __name__ == "__main__":
    configure_logging(level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    logger.info("Server running on http://localhost:%d", settings.PORT)
    urls = lan_urls(settings.PORT)
    if urls:
        logger.info("On your phone (same Wi-Fi), open:")
        for url in urls:
            logger.info("  -> %s", url)
    app.run(debug=False, host=settings.HOST, port=settings.PORT)
