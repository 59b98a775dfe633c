"""Logging setup shared by the observer service and embedding hosts."""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

RUNTIME_LOG_NAME = "limiter-runtime.log"

# chatty third-party loggers kept at WARNING regardless of the requested level
QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """Send limiter records to stderr and to a runtime log rotated at UTC midnight.

    ``log_dir`` defaults to ``logs/`` beside the package and is created on
    demand. ``retention_days`` bounds how many rotated files are kept.
    """

    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[1] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = level.upper()

    quiet: Dict[str, Any] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "limiter": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "formatter": "limiter",
                    "level": level,
                },
                "runtime_file": {
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "limiter",
                    "level": level,
                    "filename": str(log_dir / RUNTIME_LOG_NAME),
                    "when": "midnight",
                    "backupCount": max(int(retention_days), 1),
                    "utc": True,
                    "delay": True,
                    "encoding": "utf-8",
                },
            },
            "loggers": quiet,
            "root": {"level": level, "handlers": ["stderr", "runtime_file"]},
        }
    )


__all__ = ["configure_logging", "RUNTIME_LOG_NAME"]
