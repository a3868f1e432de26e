"""Logging bootstrap for the controller service.

Two files are written under the log directory, both rotated at midnight UTC:

``sensai-runtime.log``
    everything at the configured level, mirrored to the console.
``sensai-transitions.log``
    one line per view change from the ``sensai.transitions`` logger. It is
    kept at INFO whatever the runtime level is, so a quiet deployment still
    records which views a visitor went through.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

TRANSITIONS_LOGGER = "sensai.transitions"
RUNTIME_LOG = "sensai-runtime.log"
TRANSITIONS_LOG = "sensai-transitions.log"

# chatty per-request INFO lines from the HTTP stack
DEFAULT_QUIET_LOGGERS = ("httpx", "httpcore")


def _rotating(path: Path, formatter: str, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": formatter,
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    retention_days: int = 14,
    quiet_loggers: Iterable[str] = DEFAULT_QUIET_LOGGERS,
) -> Path:
    """Install console, runtime and transition handlers; returns the log directory."""

    level = (level or "INFO").upper()
    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    loggers: Dict[str, Dict[str, Any]] = {name: {"level": "WARNING"} for name in quiet_loggers}
    loggers[TRANSITIONS_LOGGER] = {"level": "INFO", "handlers": ["transitions_file"], "propagate": True}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s"},
                "transitions": {"format": "%(asctime)s | %(message)s"},
            },
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "default", "level": level},
                "runtime_file": _rotating(log_dir / RUNTIME_LOG, "default", level, retention_days),
                "transitions_file": _rotating(log_dir / TRANSITIONS_LOG, "transitions", "INFO", retention_days),
            },
            "loggers": loggers,
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s, dir=%s)", level, log_dir)
    return log_dir


__all__ = ["DEFAULT_QUIET_LOGGERS", "TRANSITIONS_LOGGER", "configure_logging"]
