"""
Logging configuration.

Configures loguru sinks for the worker and scheduler processes.
"""

import sys

from loguru import logger

from app.config.settings import settings


def setup_logging(process_name: str = "referral") -> None:
    """
    Configure loguru sinks.

    Args:
        process_name: Name shown in the startup log line
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
        )

    logger.info(
        f"Logging configured for {process_name} "
        f"(level={settings.log_level}, environment={settings.environment})"
    )
