"""Logging setup shared by the CLI commands and the web server.

Records go to stderr and, once a storage root is known, to
``<storage_root>/deckshow.log``. Handlers installed here are tagged so that a
second call (``serve`` after ``overview`` in the same process, or repeated test
invocations) replaces them instead of stacking duplicates.
"""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "deckshow.log"

_MANAGED_HANDLER_ATTR = "_deckshow_managed"


def get_log_file_path(storage_root: Path) -> Path:
    """Return the path of the application log file under *storage_root*."""

    return storage_root / LOG_FILE_NAME


def build_handlers(storage_root: Optional[Path] = None) -> List[logging.Handler]:
    """Create the stderr handler and, with *storage_root*, the log file handler."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if storage_root is not None:
        handlers.append(logging.FileHandler(get_log_file_path(storage_root), encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _remove_managed_handlers(logger: Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_HANDLER_ATTR, False):
            logger.removeHandler(handler)
            handler.close()


def configure_logging(
    level: int = logging.INFO,
    *,
    storage_root: Optional[Path] = None,
    handlers: Optional[Iterable[logging.Handler]] = None,
) -> Logger:
    """Configure the root logger.

    Explicit *handlers* take precedence; otherwise :func:`build_handlers` is
    used with *storage_root*.
    """

    logger = logging.getLogger()
    logger.setLevel(level)
    _remove_managed_handlers(logger)

    selected = list(handlers) if handlers is not None else build_handlers(storage_root)
    for handler in selected:
        setattr(handler, _MANAGED_HANDLER_ATTR, True)
        logger.addHandler(handler)
    return logger


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "LOG_FILE_NAME",
    "build_handlers",
    "configure_logging",
    "get_log_file_path",
]
