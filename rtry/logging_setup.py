"""Log handler setup for applications that want rtry's attempt logs on stdout or in a rotating file."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LoggingSettings

LOGGER_NAME = "rtry"


def configure_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """
    Attach handlers to the ``rtry`` logger from :class:`LoggingSettings`.

    Replaces handlers installed by a previous call. Messages do not
    propagate to the root logger once handlers are attached here.
    """
    settings = settings or LoggingSettings()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.level.value))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(settings.format, datefmt=settings.date_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.file_enabled:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.file_max_bytes,
            backupCount=settings.file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    logger.propagate = False

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return logger


__all__ = ["configure_logging", "LOGGER_NAME"]
