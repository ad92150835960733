"""Logging setup built on :mod:`loguru`."""

import sys
from typing import Optional, TextIO

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(level: str = "WARNING", sink: Optional[TextIO] = None) -> None:
    """Route all log records to a single stderr sink at *level*.

    stdout is reserved for assistant replies and exported sessions, so logs
    never go there.
    """
    logger.remove()
    logger.add(
        sink or sys.stderr,
        format=LOG_FORMAT,
        level=level.upper(),
        colorize=None,
    )
