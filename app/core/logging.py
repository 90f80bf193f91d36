"""Centralized logging configuration for the application."""

import logging
import logging.config
from typing import Any, MutableMapping

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_logging_config(level: str = "INFO") -> dict:
    """dictConfig for the app, uvicorn and SQLAlchemy sharing one stdout stream."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "payops": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "uvicorn.access": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
            # SQL echo stays off unless explicitly raised
            "sqlalchemy.engine": {"level": "WARNING"},
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
    }


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure logging and return the application logger.

    Safe to call more than once: dictConfig replaces the handlers instead
    of stacking new ones.

    Args:
        level: The log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Returns:
        The configured root application logger.
    """
    logging.config.dictConfig(build_logging_config(level))
    return logging.getLogger("payops")


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the payops namespace.

    Usage:
        from app.core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Settling site %s", site_id)

    Args:
        name: Usually __name__ of the calling module.

    Returns:
        A child logger with the given name.
    """
    return logging.getLogger(f"payops.{name}")


class SiteLogger(logging.LoggerAdapter):
    """Prefixes every message with ``[site=...]``.

    One batch interleaves many sites in a single stream; the prefix keeps
    a site's lines greppable.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[site={self.extra['site']}] {msg}", kwargs


def site_logger(logger: logging.Logger, site_id: str) -> SiteLogger:
    return SiteLogger(logger, {"site": site_id})
