"""Centralized logging configuration for the Instructor Hub application."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_HANDLER_MARKER = "_instructor_hub_handler"


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger, replacing handlers installed by a previous call."""

    logger = logging.getLogger()
    logger.setLevel(level)

    for existing in list(logger.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            logger.removeHandler(existing)
            existing.close()

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]

    for handler in handlers:
        setattr(handler, _HANDLER_MARKER, True)
        logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "instructor_hub.log"


def build_default_handlers(storage_root: Path) -> List[logging.Handler]:
    """Return a file handler under *storage_root* plus a console handler."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(get_log_file_path(storage_root), encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    return [file_handler, stream_handler]


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "build_default_handlers",
    "configure_logging",
    "get_log_file_path",
]
