"""
Centralized logging for Screenscribe.

Errors go to a file without console output (the console belongs to the CLI).
Component traces go to a small rotating debug log.
"""

import logging
import os
from pathlib import Path
from datetime import datetime

# Create logs directory if it doesn't exist
LOGS_DIR = Path(os.environ.get("SCREENSCRIBE_LOG_DIR") or Path(__file__).parent.parent / "logs")
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Log file paths
LOG_FILE = LOGS_DIR / "screenscribe_errors.log"
DEBUG_LOG = LOGS_DIR / "debug.log"
_MAX_DEBUG_LOG_SIZE = 1 * 1024 * 1024  # 1MB


class ScribeLogger:
    """Centralized logger for Screenscribe."""

    _instance = None
    _logger = None

    def __init__(self):
        """Initialize the logger (singleton)."""
        if ScribeLogger._logger is None:
            ScribeLogger._logger = self._setup_logger()

    @classmethod
    def get_logger(cls):
        """Get the singleton logger instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._logger

    def _setup_logger(self):
        """Set up the file logger with no console output."""
        logger = logging.getLogger('screenscribe')
        logger.setLevel(logging.ERROR)
        logger.propagate = False

        # Remove any existing handlers
        logger.handlers = []

        file_handler = logging.FileHandler(LOG_FILE, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.ERROR)

        # Format: [2024-01-15 14:30:25] ERROR - message
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(formatter)

        logger.addHandler(file_handler)

        return logger


def log_error(message, exception=None):
    """
    Log an error message to file.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = ScribeLogger.get_logger()
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in end_session")
    """
    logger = ScribeLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)


def _rotate_debug_log_if_needed():
    """Rotate debug.log if it exceeds max size."""
    try:
        if DEBUG_LOG.exists() and DEBUG_LOG.stat().st_size > _MAX_DEBUG_LOG_SIZE:
            backup = DEBUG_LOG.with_suffix('.log.1')
            if backup.exists():
                backup.unlink()
            DEBUG_LOG.rename(backup)
    except OSError:
        pass


def log_debug(tag: str, msg: str):
    """Write a component-tagged debug line with timestamp. Never raises."""
    _rotate_debug_log_if_needed()
    timestamp = datetime.now().strftime("%H:%M:%S")
    try:
        with open(DEBUG_LOG, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] [{tag}] {msg}\n")
    except OSError:
        pass


# Initialize logger on import
ScribeLogger.get_logger()
