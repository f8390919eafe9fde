"""Logging configuration shared by the CLI and the web bridge."""
from __future__ import annotations

import logging
from typing import List

from .config import LoggingConfig


LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
PACKAGE_LOGGER = "mtr_provisioner"


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Attach console and optional file handlers to the package logger.

    With a log directory configured, ``combined.log`` receives every record
    and ``error.log`` only errors. Calling this again replaces the handlers.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.directory:
        config.directory.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.directory / "combined.log", encoding="utf-8"))
        error_handler = logging.FileHandler(config.directory / "error.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["LOG_FORMAT", "configure_logging"]
