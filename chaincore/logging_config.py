"""
logging_config.py — Loguru setup for chain-core

Every module logs through the stdlib (`logging.getLogger(__name__)`); the
intercept handler installed here forwards those records into Loguru, which
owns formatting and sinks.

Business Rules:
- One backend: Loguru. stdlib records are forwarded, never printed directly
- APP_ENV=production → JSON lines on stdout, plus a rotating JSON file when
  LOG_FILE is set (50 MB, 7 days, gzip)
- Otherwise a colored single-line format for the terminal
- Every record carries node_id and request_id ("-" outside a request)
- httpx, uvicorn access, SQLAlchemy and APScheduler chatter is held at WARNING

Called by: chaincore/main.py (lifespan)
Depends on: LOG_LEVEL, APP_ENV, LOG_FILE, NODE_ID environment variables
"""

import logging
import os
import sys

from loguru import logger

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "apscheduler")

DEV_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "{extra[node_id]}/{extra[request_id]} | {message}"
)


def setup_logging(level: str | None = None, production: bool | None = None) -> None:
    """Install Loguru sinks and route stdlib logging into them.

    Safe to call more than once; each call replaces the previous sinks.
    """
    logger.remove()

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if production is None:
        production = os.getenv("APP_ENV", "development").lower() == "production"

    logger.configure(extra={"node_id": os.getenv("NODE_ID", "main"), "request_id": "-"})

    if production:
        logger.add(sys.stdout, level=level, format="{message}", serialize=True)
        log_file = os.getenv("LOG_FILE")
        if log_file:
            logger.add(
                log_file,
                level=level,
                rotation="50 MB",
                retention="7 days",
                compression="gz",
                serialize=True,
            )
    else:
        logger.add(sys.stdout, level=level, format=DEV_FORMAT, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured", level=level, production=production)


class InterceptHandler(logging.Handler):
    """Forward a stdlib LogRecord to Loguru, keeping the original caller frame."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())
