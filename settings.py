"""Runtime settings for the duotone server, read from the environment."""

import os

PORT = int(os.environ.get("PORT", "3000"))
HOST = os.environ.get("HOST", "0.0.0.0")
MAX_UPLOAD_MB = float(os.environ.get("MAX_UPLOAD_MB", "25"))
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]
LOG_LEVEL = os.environ.get("DUOTONE_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.environ.get("DUOTONE_LOG_FILE") or None

# Upload MIME types accepted by /api/process
ALLOWED_MIMETYPES = {"image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif"}

DEFAULT_MAX_EDGE = 2048
MIN_MAX_EDGE = 256
MAX_MAX_EDGE = 4096
DEFAULT_QUALITY = 92

# Interactive preview is fitted into this box before filtering
PREVIEW_MAX_W = 1400
PREVIEW_MAX_H = 1400

EXPORT_BASENAME = "brave-pink"

# Applied to every route, per client address (Flask-Limiter syntax)
RATE_LIMIT = os.environ.get("RATE_LIMIT", "200 per 15 minutes")
