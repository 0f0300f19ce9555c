"""
Logging helpers shared by every module.
"""

import logging
import sys

_PACKAGE_LOGGER = "livescribe"


def get_logger(name: str = _PACKAGE_LOGGER) -> logging.Logger:
    """Return a logger under the package namespace."""
    if name != _PACKAGE_LOGGER and not name.startswith(_PACKAGE_LOGGER + "."):
        name = f"{_PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Install a single stdout handler on the package logger.

    Calling it again only adjusts the level.
    """
    logger = logging.getLogger(_PACKAGE_LOGGER)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
    return logger
