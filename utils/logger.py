from __future__ import annotations

import logging
import logging.config
from pathlib import Path

LOG_FILE_NAME = "inbox_triage.log"
ACCESS_LOG_FILE_NAME = "access.log"


def configure_logging(log_dir: Path, level: str = "INFO") -> Path:
    """Configure console and file loggers for the API, CLI and Google client."""

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            },
            "console": {
                "format": "%(levelname)s | %(message)s",
            },
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "standard",
                "filename": str(log_path),
                "maxBytes": 1_000_000,
                "backupCount": 3,
                "encoding": "utf-8",
            },
            "access_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "standard",
                "filename": str(log_dir / ACCESS_LOG_FILE_NAME),
                "maxBytes": 1_000_000,
                "backupCount": 3,
                "encoding": "utf-8",
            },
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "console",
            },
        },
        "loggers": {
            # request lines from uvicorn stay out of the application log
            "uvicorn.access": {
                "handlers": ["access_file", "stdout"],
                "level": "INFO",
                "propagate": False,
            },
            "googleapiclient.discovery_cache": {"level": "ERROR"},
            "google_auth_httplib2": {"level": "WARNING"},
        },
        "root": {
            "handlers": ["file", "stdout"],
            "level": level.upper(),
        },
    }

    logging.config.dictConfig(config)
    logging.getLogger(__name__).debug("Logging configured at %s in %s", level, log_dir)
    return log_path
