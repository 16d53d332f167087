"""
AutoKeystone - Configuration Module

Application-level constants and logging configuration.
"""

import logging
from typing import Final

# ============================================================================
# Application Constants
# ============================================================================

APP_ID: Final[str] = "autokeystone"


# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: int = logging.INFO
LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOGGER_NAME: Final[str] = APP_ID


def setup_logging(debug: bool = False, log_format: str | None = None) -> logging.Logger:
    """Configure logging for applications embedding the correction engine.

    Library modules only create named loggers; handlers are installed here
    so the host application decides where output goes.

    Args:
        debug: Enable DEBUG level (per-run RANSAC and simplex details)
        log_format: Optional custom format string

    Returns:
        The package root logger
    """
    global LOG_LEVEL

    if debug:
        LOG_LEVEL = logging.DEBUG

    logging.basicConfig(level=LOG_LEVEL, format=log_format or LOG_FORMAT)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(LOG_LEVEL)
    return logger
