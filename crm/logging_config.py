# crm/logging_config.py
import logging
import logging.config
from pathlib import Path

from crm import config

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUPS = 5


def _rotating(filename: Path, formatter: str, level: str) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": formatter,
        "filename": str(filename),
        "maxBytes": MAX_BYTES,
        "backupCount": BACKUPS,
        "encoding": "utf-8",
        "level": level,
    }


def build_logging_config(log_dir: str | None = None) -> dict:
    base = Path(log_dir or config.settings.LOG_DIR)
    app_handlers = ["console", "file", "error_file"]

    return {
        "version": 1,
        "disable_existing_loggers": False,

        "formatters": {
            "standard": {
                "format": LOG_FORMAT,
            },
            "access": {
                "format": "%(asctime)s | %(levelname)s | uvicorn.access | %(message)s",
            },
        },

        # each rotating handler owns its own file
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": "INFO",
            },
            "file": _rotating(base / "crm.log", "standard", "INFO"),
            "error_file": _rotating(base / "errors.log", "standard", "ERROR"),
            "access_file": _rotating(base / "access.log", "access", "INFO"),
        },

        "loggers": {
            "uvicorn": {
                "handlers": app_handlers,
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn.error": {
                "handlers": app_handlers,
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["access_file"],
                "level": "INFO",
                "propagate": False,
            },
            "fastapi": {
                "handlers": app_handlers,
                "level": "INFO",
                "propagate": False,
            },
            # crm.* modules (routers, services, automation runner)
            "crm": {
                "handlers": app_handlers,
                "level": "INFO",
                "propagate": False,
            },
            "apscheduler": {
                "handlers": app_handlers,
                "level": "WARNING",
                "propagate": False,
            },
        },

        "root": {
            "handlers": app_handlers,
            "level": "INFO",
        },
    }


def setup_logging(log_dir: str | None = None) -> None:
    cfg = build_logging_config(log_dir)
    Path(cfg["handlers"]["file"]["filename"]).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(cfg)
    logging.getLogger("crm").info("Logging initialized")
