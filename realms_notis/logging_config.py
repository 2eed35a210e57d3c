"""
Logging Configuration for the Realms Notification System.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from .config import Config, config as default_config


def setup_logging(settings: Optional[Config] = None) -> None:
    """
    Configure logging with file and console handlers.

    Args:
        settings: Config to read log options from (defaults to the module config)
    """
    settings = settings or default_config
    level_name = "DEBUG" if settings.DEBUG_LOG else settings.LOG_LEVEL.upper()
    level = getattr(logging, level_name, logging.INFO)

    # Create logger
    logger = logging.getLogger()
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()

    # Create formatter
    formatter = logging.Formatter(settings.LOG_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Ensure log directory exists
    log_path = Path(settings.LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # File handler with rotation
    file_handler = logging.handlers.RotatingFileHandler(
        settings.LOG_FILE,
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apprise").setLevel(logging.WARNING)

    logger.info("=" * 80)
    logger.info("Realms Notification System - Logging Initialized")
    logger.info(f"Log level: {level_name}")
    logger.info(f"Log file: {settings.LOG_FILE}")
    logger.info("=" * 80)
