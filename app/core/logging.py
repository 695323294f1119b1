"""Logging setup."""
from __future__ import annotations

import logging

LOGGER_ROOT = "oauth_sim"


def configure_logging(level: str = "INFO") -> None:
    logger = logging.getLogger(LOGGER_ROOT)
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.info("Application started. Log level: %s", level.upper())
