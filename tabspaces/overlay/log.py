"""Loguru setup for the tabspaces CLI.

The overlay logs through loguru everywhere except the discard coordinator,
which uses a stdlib logger, and the redis client.  Both are routed into the
same stderr sink so command output on stdout stays machine readable.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_BRIEF_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
_DEBUG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Third-party loggers kept at WARNING unless the overlay itself runs at DEBUG.
_NOISY = ("redis", "asyncio")


class _StdlibBridge(logging.Handler):
    """Forward stdlib records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    """Send every log record to stderr at ``level``.

    Timestamps and call sites are only shown at DEBUG.
    """
    level = level.upper()
    debug = level in ("TRACE", "DEBUG")
    logger.configure(
        handlers=[{"sink": sys.stderr, "level": level, "format": _DEBUG_FORMAT if debug else _BRIEF_FORMAT}]
    )

    logging.basicConfig(handlers=[_StdlibBridge()], level=0, force=True)
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    logger.debug("Logging configured at {}", level)
