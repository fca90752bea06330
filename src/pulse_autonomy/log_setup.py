"""
File-based logging for the autonomy engine.

Modules log through logging.getLogger(__name__); this module only attaches
the rotating file handler to the package logger. It never writes to
stdout/stderr, so an embedding voice or MCP process keeps its streams clean.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import Settings

PACKAGE_LOGGER = "pulse_autonomy"
LOG_FILENAME = "autonomy.log"

_initialized = False


def configure_logging(log_dir: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Attach the rotating file handler to the package logger.

    Lazy and idempotent: repeated calls return the configured logger.
    """
    global _initialized

    logger = logging.getLogger(PACKAGE_LOGGER)
    if _initialized:
        return logger

    log_dir = Path(log_dir) if log_dir else Settings.from_env().log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.setLevel(level)
    # Remove any existing handlers (prevents duplicates on reload)
    logger.handlers.clear()

    # 5MB max, keep 3 backups
    file_handler = RotatingFileHandler(
        log_dir / LOG_FILENAME,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(file_handler)
    _initialized = True

    return logger


def reset_logging() -> None:
    """Detach handlers so the next configure_logging() starts fresh."""
    global _initialized
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    _initialized = False
