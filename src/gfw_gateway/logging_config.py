"""Centralized logging configuration."""

import logging
from typing import Union

from gfw_gateway.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that install their own handlers; they are given ours instead
LIBRARY_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "fastapi")


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _attach(logger: logging.Logger, formatter: logging.Formatter, level: int) -> None:
    logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(level)


def configure_logging(level: Union[str, int] = LOG_LEVEL) -> None:
    """Send the gateway's and its libraries' records to one console format.

    Library loggers stop propagating to root so uvicorn lines are not
    printed twice.
    """
    log_level = _resolve_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    _attach(logging.getLogger(), formatter, log_level)
    for name in LIBRARY_LOGGERS:
        library_logger = logging.getLogger(name)
        _attach(library_logger, formatter, log_level)
        library_logger.propagate = False
