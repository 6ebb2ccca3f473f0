"""Logging configuration for the proxy socket command line tools.

This module provides centralized logging configuration using Loguru.
It sets up logging to both file and console with proper formatting
and log rotation. Library code only logs through ``loguru.logger`` and
leaves sink configuration to the application.
"""

import sys
from pathlib import Path

from loguru import logger

# Logs directory in user's home directory
LOG_DIR = Path.home() / ".proxy-socket" / "logs"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(debug: bool = False, log_dir: Path = LOG_DIR) -> None:
    """Replace loguru's default handler with console and rotating file handlers.

    Args:
        debug: Log DEBUG messages to the console instead of WARNING and up
        log_dir: Directory for the rotating log file
    """
    logger.remove()  # Remove default handler

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level="DEBUG" if debug else "WARNING",
        backtrace=True,
        diagnose=debug,
    )

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(f"Can not create log directory {log_dir}: {exc}")
        return

    # Add file handler with rotation
    logger.add(
        log_dir / "proxy-socket.log",
        rotation="10 MB",
        retention="1 week",
        compression="zip",
        format=FILE_FORMAT,
        level="DEBUG",
        backtrace=True,
        diagnose=False,
    )


__all__ = ["LOG_DIR", "logger", "setup_logging"]
