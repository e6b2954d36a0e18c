"""
Central logging configuration for taskcal_lite.

Keeps package loggers at the requested verbosity while holding noisy
third-party libraries (HTTP client, ICS parser, event loop) at WARNING.
"""

import logging
import os
from typing import Optional

PACKAGE_LOGGER = "taskcal_lite"

# Third-party loggers and the level they are held at
THIRD_PARTY_LEVELS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.WARNING,
}


def _env_debug() -> bool:
    return os.getenv("TASKCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(level_name: Optional[str] = None, debug_mode: bool = False) -> int:
    """Apply logger levels for taskcal_lite and its dependencies.

    Args:
        level_name: Level for package loggers (e.g. from config ``log_level``)
        debug_mode: Force DEBUG for package loggers

    Returns:
        The level applied to the package logger

    Environment Variables:
        TASKCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        TASKCAL_LOG_LEVEL: Overrides ``level_name``
    """
    env_level = os.getenv("TASKCAL_LOG_LEVEL", "").strip().upper()
    if debug_mode or _env_debug():
        level = logging.DEBUG
    elif env_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        level = getattr(logging, env_level)
    elif level_name and level_name.upper() in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level = getattr(logging, level_name.upper())
    else:
        level = logging.INFO

    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    for logger_name, third_party_level in THIRD_PARTY_LEVELS.items():
        # Third-party debug output only when explicitly debugging
        logging.getLogger(logger_name).setLevel(logging.DEBUG if level == logging.DEBUG and _env_debug() else third_party_level)

    logging.getLogger(PACKAGE_LOGGER).debug(
        "Logging configured: package=%s", logging.getLevelName(level)
    )
    return level


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in (PACKAGE_LOGGER, *THIRD_PARTY_LEVELS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
