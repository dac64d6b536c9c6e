"""Logger hierarchy and handler setup shared by the CLI and the service."""

from __future__ import annotations

import logging
from pathlib import Path

_ROOT = "solcov"
_CONSOLE_FORMAT = "[solcov] %(levelname)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``solcov`` or one of its children, e.g. ``solcov.compile``."""
    return logging.getLogger(f"{_ROOT}.{name}" if name else _ROOT)


def console_level(*, verbose: bool = False, silent: bool = False) -> int:
    """Console threshold; ``silent`` keeps warnings and errors only and wins over ``verbose``."""
    if silent:
        return logging.WARNING
    return logging.DEBUG if verbose else logging.INFO


def configure_logging(
    *, verbose: bool = False, silent: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Route solcov records to stderr and, when given, to a debug-level log file."""
    console = console_level(verbose=verbose, silent=silent)
    logger = get_logger()
    logger.setLevel(logging.DEBUG if log_file is not None else console)
    logger.propagate = False

    # A second call replaces the handlers of the first one.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_with_format(logging.StreamHandler(), console, _CONSOLE_FORMAT))
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        logger.addHandler(_with_format(file_handler, logging.DEBUG, _FILE_FORMAT))
    return logger


def _with_format(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


__all__ = ["configure_logging", "console_level", "get_logger"]
