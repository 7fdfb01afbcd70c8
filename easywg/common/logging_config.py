"""
Logging setup for the service, the scheduler and the CLI.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from .config import Config

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def setup_logger(
    logger: logging.Logger, log_level: int, fmt: str = DEFAULT_FORMAT
) -> None:
    """
    Attach a console handler to a logger unless it already has handlers.

    Args:
        logger: The logger instance to configure
        log_level: The logging level to set
        fmt: Record format for the console handler
    """
    logger.setLevel(log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)


def setup_logging(config: Config | None = None) -> logging.Logger:
    """Configure the package logger, with a rotating file when LOG_FILE is set."""
    if config is None:
        config = Config()

    logger = logging.getLogger("easywg")
    logger.handlers.clear()
    setup_logger(logger, config.LOG_LEVEL, config.LOG_FORMAT)

    if config.LOG_FILE:
        log_path = Path(config.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        file_handler.setLevel(config.LOG_LEVEL)
        file_handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger
