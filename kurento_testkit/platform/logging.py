"""Logging helpers shared by every harness module."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

# ANSI escape sequences for colors
COLORS = {
    "red": "\u001b[31;1m",
    "green": "\u001b[32;1m",
    "yellow": "\u001b[33;1m",
    "blue": "\u001b[34;1m",
    "magenta": "\u001b[35;1m",
    "cyan": "\u001b[36;1m",
    "white": "\u001b[37;1m",
    "reset": "\u001b[0m",
}

LEVEL_COLORS = {
    logging.DEBUG: "cyan",
    logging.INFO: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "magenta",
}

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT = "%H:%M:%S"

_HANDLER_MARKER = "_kurento_testkit_handler"


class ColorFormatter(logging.Formatter):
    """Formatter that colours the level name when writing to a terminal."""

    def __init__(self, fmt: str = DEFAULT_FORMAT, datefmt: str = DEFAULT_DATEFMT, use_color: bool = True) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)
        color = COLORS.get(LEVEL_COLORS.get(record.levelno, ""), "")
        original = record.levelname
        record.levelname = f"{color}{original}{COLORS['reset']}" if color else original
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _resolve_level(level: Optional[int | str]) -> int:
    if level is None:
        level = os.getenv("KURENTO_TEST_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def create_logger(name: str, level: Optional[int | str] = None, stream=None) -> logging.Logger:
    """
    Return a logger with a single colour-aware stream handler attached.

    Calling this repeatedly for the same name does not stack handlers, so
    modules can call it at construction time without bookkeeping.

    Args:
        name: Logger name, usually ``__name__`` plus an optional suffix.
        level: Level name or number. Defaults to ``KURENTO_TEST_LOG_LEVEL`` or INFO.
        stream: Stream for the handler (defaults to ``sys.stderr``).
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))
    if any(getattr(handler, _HANDLER_MARKER, False) for handler in logger.handlers):
        return logger

    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    is_tty = bool(getattr(stream, "isatty", lambda: False)())
    handler.setFormatter(ColorFormatter(use_color=is_tty))
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    # Let pytest's caplog and any root configuration still see the records.
    logger.propagate = True
    return logger


__all__ = ["COLORS", "ColorFormatter", "create_logger"]
