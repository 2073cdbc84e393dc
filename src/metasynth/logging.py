"""Logging for metasynth.

The statistics core never logs. The dispatch layer reports failures and
result warnings on the ``metasynth`` logger, which carries only a
``NullHandler`` until an application (the CLI, or a host process) opts in
with :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

logger = logging.getLogger("metasynth")
logger.addHandler(logging.NullHandler())

FORMATS = {
    "standard": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "json": (
        '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
        '"logger": "%(name)s", "message": "%(message)s"}'
    ),
}

# Handlers attached by setup_logging; anything else belongs to the host
_installed: list[logging.Handler] = []


def setup_logging(
    level: int | str = logging.INFO,
    log_file: str | None = None,
    format_style: str = "standard",
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the ``metasynth`` logger.

    Calling it again replaces the handlers from the previous call and
    closes them. Handlers added by anyone else are left alone.

    Args:
        level: Logging level name or number
        log_file: Optional file path to also write logs to
        format_style: "standard" or "json"

    Returns:
        The package logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    if format_style not in FORMATS:
        raise ValueError(f"Unknown log format '{format_style}'. Valid: {sorted(FORMATS)}")

    reset_logging()
    logger.setLevel(level)
    formatter = logging.Formatter(FORMATS[format_style], datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _installed.append(handler)

    return logger


def reset_logging() -> None:
    """Detach and close the handlers installed by :func:`setup_logging`."""
    while _installed:
        handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()


def get_logger(name: str) -> logging.Logger:
    """Child logger, e.g. ``get_logger("registry")`` -> ``metasynth.registry``."""
    return logging.getLogger(f"metasynth.{name}")


def _with_context(message: str, context: dict[str, Any] | None) -> str:
    details = {key: value for key, value in (context or {}).items() if value is not None}
    if not details:
        return message
    return message + " | " + ", ".join(f"{k}={v}" for k, v in details.items())


def log_failure(
    logger: logging.Logger,
    operation: str,
    error: Exception | str,
    context: dict[str, Any] | None = None,
    level: int = logging.ERROR,
) -> None:
    """Log ``operation`` failing with ``error``; ``context`` entries set to None are dropped."""
    error_type = type(error).__name__ if isinstance(error, Exception) else "Error"
    logger.log(level, _with_context(f"{operation} failed: [{error_type}] {error}", context))


def log_warning(
    logger: logging.Logger,
    operation: str,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    logger.warning(_with_context(f"{operation}: {message}", context))
