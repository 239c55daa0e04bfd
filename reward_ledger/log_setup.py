"""
Configures the loguru logger for the service.
"""

import sys

from loguru import logger

from .settings import Settings


def setup_logging(settings: Settings) -> None:
    """Replace the default sink with stderr at the configured level, plus an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
            encoding="utf-8",
        )

    logger.info(f"Starting {settings.app_name}...")
