"""Logging bootstrap for the controller service."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

RUNTIME_LOG = "controller-runtime.log"
SESSION_LOG = "sessions.log"
SESSION_LOGGER = "cyberdeck.session_manager"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _rotating(path: Path, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "default",
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> Path:
    """Route logs to the console and a runtime file, plus a session audit file.

    The audit file only carries the session controller's records, so a day of
    scans can be reviewed without the HTTP and serial noise. Returns the
    resolved log directory.
    """

    level = level.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level: {level}")

    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": LOG_FORMAT}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
                "runtime_file": _rotating(log_dir / RUNTIME_LOG, level, retention_days),
                "session_file": _rotating(log_dir / SESSION_LOG, "INFO", retention_days),
            },
            "loggers": {
                SESSION_LOGGER: {"handlers": ["session_file"]},
                "httpx": {"level": "WARNING"},
            },
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )
    return log_dir


__all__ = ["configure_logging"]
