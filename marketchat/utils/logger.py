"""
Logging utilities.

WHAT: Centralized logging configuration
WHY: Consistent log format and easy logger access
HOW: Python logging with file and console handlers
"""

import logging
import sys
from pathlib import Path

from ..core.config import settings


def setup_logging(log_file: str | None = None):
    """
    Configure client logging.
    
    WHAT: Set up package logger with console and optional file handlers
    WHY: Poll failures and role denials are swallowed or surfaced quietly, logs are the trail
    HOW: Create handlers with formatters, set levels from config
    
    Args:
        log_file: Override for settings.LOG_FILE; pass "" to disable file logging
    """
    log_path = settings.LOG_FILE if log_file is None else log_file
    
    package_logger = logging.getLogger("marketchat")
    package_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    
    # Remove existing handlers
    package_logger.handlers.clear()
    
    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    package_logger.addHandler(console_handler)
    
    if log_path:
        # Create logs directory if needed
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        package_logger.addHandler(file_handler)
    
    package_logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} logging initialized (level={settings.LOG_LEVEL}, file={log_path or 'disabled'})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.
    
    Args:
        name: Module name (typically __name__)
    
    Returns:
        Logger instance
    """
    return logging.getLogger(name)
