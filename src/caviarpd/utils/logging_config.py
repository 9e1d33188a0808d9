"""
Logging helpers for caviarpd.

Every module obtains its logger through ``get_logger(__name__)`` so that the
whole package hangs off the ``caviarpd`` logger. Nothing is printed unless the
application (or ``setup_logging``) attaches a handler.

Usage:
    from caviarpd.utils.logging_config import get_logger, setup_logging

    setup_logging("INFO")
    logger = get_logger(__name__)
"""

import logging
from typing import Optional, Union

ROOT_LOGGER_NAME = "caviarpd"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the ``caviarpd`` hierarchy."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(
    level: Optional[Union[str, int]] = None,
    fmt: Optional[str] = None,
) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    Calling this more than once only updates the level.

    Args:
        level: Logging level name or number. Defaults to the
            ``CAVIARPD_LOG_LEVEL`` runtime setting.
        fmt: Format string for the handler (default: ``DEFAULT_FORMAT``)

    Returns:
        The configured ``caviarpd`` logger
    """
    global _configured

    if level is None:
        from ..config import config

        level = config.runtime.log_level
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        logger.addHandler(handler)
        _configured = True

    return logger
