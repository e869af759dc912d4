"""
logging_config.py — Centralized Logging Configuration for ledgersync

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so all getLogger() calls in the services, the sync engine
and the scheduler route through Loguru.

Business Rules:
- All logs go through Loguru (no direct print())
- JSON format in production for machine parsing
- Human-readable format in development
- Log rotation: 50MB files, 7-day retention

Called by: ledgersync/main.py (on startup)
Depends on: LOG_LEVEL, APP_ENV environment variables
"""

import logging
import os
import sys

from loguru import logger


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at app startup, before any other imports that log.
    """
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    is_production = os.getenv("APP_ENV", "development").lower() == "production"

    if is_production:
        logger.add(
            sys.stdout,
            level=log_level,
            format="{message}",
            serialize=True,
        )
        logger.add(
            os.getenv("LOG_FILE", "/var/log/ledgersync/ledgersync.log"),
            level=log_level,
            rotation="50 MB",
            retention="7 days",
            compression="gz",
            serialize=True,
        )
    else:
        logger.add(
            sys.stdout,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            colorize=True,
        )

    # Intercept stdlib logging → route through Loguru
    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured", level=log_level, production=is_production)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip frames from stdlib logging internals
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )
