"""Logging utilities for xbridge.

Modules log through ``logging.getLogger("xbridge.<area>")``; this module
owns the handler and level of the package logger.
"""

from __future__ import annotations

import logging
import sys

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .config import LogSettings


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the xbridge logger instance.

    Returns
    -------
    logging.Logger
        The xbridge logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("xbridge")
        logger.setLevel(logging.WARNING)

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def configure_from_settings(settings: LogSettings) -> logging.Logger:
    """Apply level and format from ``LogSettings`` to the package logger."""
    logger = get_logger()
    set_level(settings.level)
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(settings.format))
    return logger


def log_background_error(task_name: str, exc: BaseException) -> None:
    """Log a failure in a background task with a standardized format.

    Parameters
    ----------
    task_name : str
        The background task that failed (e.g., "token refresh").
    exc : BaseException
        The exception that was raised.
    """
    get_logger().error("Background %s failed: %s", task_name, exc, exc_info=exc)
