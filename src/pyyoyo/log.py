"""Diagnostic output wiring for pyyoyo."""

import logging
import sys
from typing import TextIO

LOGGER_NAME = "pyyoyo"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: logging.Handler | None = None


def verbosity_to_level(verbosity: int) -> int:
    """Map the -v/-q verbosity scale onto logging levels."""
    if verbosity < 0:
        return logging.CRITICAL + 1
    if verbosity == 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(verbosity: int = 0, stream: TextIO | None = None) -> logging.Logger:
    """
    Send pyyoyo diagnostics to ``stream`` (stderr by default).

    Safe to call repeatedly; the previously installed handler is replaced.
    """
    global _handler

    logger = logging.getLogger(LOGGER_NAME)
    if _handler is not None:
        logger.removeHandler(_handler)

    _handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(_handler)
    logger.setLevel(verbosity_to_level(verbosity))
    return logger
