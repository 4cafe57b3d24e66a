"""Logging configuration using loguru.

Everything logged through the stdlib (uvicorn, sqlalchemy, aiodocker's
aiohttp transport) is routed into loguru, so the control plane writes a
single stream.  With ``SHARDHOST_LOG_JSON=true`` that stream is one JSON
object per line for log shippers.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Chatty at INFO; only their warnings are interesting.
_QUIET_LOGGERS = ("uvicorn.access", "aiohttp.access", "aiohttp.client", "sqlalchemy.engine", "alembic.runtime")


class _InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging-internal frames so loguru reports the real call site.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, serialize: bool = False) -> None:
    """Install loguru as the only sink (stderr) and capture stdlib logging.

    Safe to call more than once; each call replaces the previous sinks.
    """
    level = level.upper()
    logger.remove()
    if serialize:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={}, json={})", level, serialize)
