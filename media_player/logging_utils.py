"""Centralized logging configuration for the media player."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_MANAGED_ATTRIBUTE = "_media_player_managed"


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger.

    Handlers installed by a previous call are replaced, so calling this twice
    (once per CLI command in tests, for example) does not duplicate output.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    for existing in list(logger.handlers):
        if getattr(existing, _MANAGED_ATTRIBUTE, False):
            logger.removeHandler(existing)
            existing.close()

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]

    for handler in handlers:
        setattr(handler, _MANAGED_ATTRIBUTE, True)
        logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "media_player.log"


def build_default_handlers(storage_root: Path) -> List[logging.Handler]:
    """Return a file handler inside *storage_root* plus a stderr handler."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    log_file = get_log_file_path(storage_root)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
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
