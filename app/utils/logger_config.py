import logging.config
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.config.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(name: str = "fooddash"):
    """Return the service logger, attaching console and rotating file output once."""

    logger = logging.getLogger(name)
    logger.setLevel(settings.LOG_LEVEL)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if not settings.TEST:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "fulfillment.log",
            maxBytes=1024 * 1024,  # 1MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def _rotating(filename: str, level: str = "INFO") -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "filename": str(Path(settings.LOG_DIR) / filename),
        "maxBytes": 1024 * 1024 * 10,  # 10MB
        "backupCount": 5,
        "formatter": "verbose",
        "level": level,
    }


def configure_production_logging():
    """
    Production layout: service events, scheduler activity (deadline jobs and
    reconciliation) and errors go to separate rotating files.
    """
    Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "verbose": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - [%(process)d] - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "service": _rotating("fulfillment.log"),
                "scheduler": _rotating("scheduler.log"),
                "error": _rotating("error.log", "ERROR"),
            },
            "loggers": {
                "fooddash": {
                    "handlers": ["service", "error"],
                    "level": settings.LOG_LEVEL,
                    "propagate": False,
                },
                "apscheduler": {
                    "handlers": ["scheduler", "error"],
                    "level": "INFO",
                    "propagate": False,
                },
            },
        }
    )
