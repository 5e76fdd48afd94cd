"""Logging setup helpers: the relay emits records, this decides how they look."""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

LEVEL_COLORS = {
    logging.DEBUG: "\033[90m",
    logging.INFO: "\033[92m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[95m",
}
RESET = "\033[0m"


class ColorFormatter(logging.Formatter):
    """Colorize the level name and the whole line for DEBUG records."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return text
        if record.levelno == logging.DEBUG:
            return f"{color}{text}{RESET}"
        return text.replace(record.levelname, f"{color}{record.levelname}{RESET}", 1)


def resolve_level(verbose: bool, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def setup_logging(
    verbose: bool = True,
    debug: bool = False,
    *,
    color: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure the root logger with a single console handler."""

    stream = stream or sys.stderr
    if color is None:
        isatty = getattr(stream, "isatty", None)
        color = bool(callable(isatty) and isatty())

    logger = logging.getLogger()
    logger.setLevel(resolve_level(verbose, debug))

    formatter: logging.Formatter = ColorFormatter(LOG_FORMAT) if color else logging.Formatter(LOG_FORMAT)
    for handler in list(logger.handlers):
        if getattr(handler, "_tsrelay", False):
            logger.removeHandler(handler)
    console = logging.StreamHandler(stream)
    console.setFormatter(formatter)
    console._tsrelay = True  # type: ignore[attr-defined]
    logger.addHandler(console)
    return logger
