"""
Logging configuration.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed by the application entry point through ``setup_logging``.
"""

import logging
import os
import sys
from typing import Optional, Union

LOG_LEVEL_ENV = "CLAUDE_USAGE_LOG_LEVEL"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKAGE_LOGGER = "claude_usage_core"


def _get_log_level_from_env() -> int:
    """Get log level from environment variable."""
    env_level = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = getattr(logging, env_level, logging.WARNING)
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(level: Optional[int] = None, log_format: Optional[str] = None) -> None:
    """Configure the root logger with a stderr stream handler.

    Args:
        level: Logging level (default: from CLAUDE_USAGE_LOG_LEVEL or WARNING)
        log_format: Custom format string (default: timestamp - name - level - message)
    """
    log_level = level if level is not None else _get_log_level_from_env()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
    root_logger.addHandler(console_handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)


def set_log_level(level: Union[str, int]) -> None:
    """Set log level at runtime.

    Args:
        level: Level name ('DEBUG', 'INFO', etc.) or logging constant
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)

    logging.getLogger().setLevel(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    for handler in logging.getLogger().handlers:
        handler.setLevel(level)
