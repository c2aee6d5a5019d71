"""Handlers and formatting for the ``cep_system`` package logger."""

from __future__ import annotations

import logging
import sys
from typing import List, Optional

LOGGER_NAME = "cep_system"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handlers(log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    return handlers


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Send package records to stdout and, when given, to ``log_file``.

    A repeated call replaces the handlers installed by the previous one.
    """

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _handlers(log_file):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)

    logger.debug("Logging to stdout%s", f" and {log_file}" if log_file else "")
    return logger


__all__ = ["setup_logging", "LOGGER_NAME"]
