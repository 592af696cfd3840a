"""Logging set-up for the duotone server."""

from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Optional

__all__ = ["configure_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> Optional[Path]:
    """Route every logger (ours, Flask's and werkzeug's) through stderr and,
    when ``log_file`` is given, an append-mode file as well.

    Reconfiguring replaces the handlers of the previous call.  Returns the log
    file path, if any.
    """

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        }
    }
    path = None
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": str(path),
            "encoding": "utf-8",
        }

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}},
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
    })
    return path
