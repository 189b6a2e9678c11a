# loggingconfig.py
"""
Stackmate – Logging
===================

Named loggers with a coloured console handler, or JSON lines when
``USE_JSON_LOGGING`` is switched on.
"""

import json
import logging
import sys
from typing import Any, Dict, Set, Union

import colorlog

USE_JSON_LOGGING = False

_EXTRA_FIELDS = ("component", "tx_id", "service")

# every logger handed out by setup_logging, so one call can retune them all
_CONFIGURED: Set[str] = set()


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_entry["stack_info"] = self.formatStack(record.stack_info)

        standard_attrs = logging.LogRecord(
            "", "", "", "", "", "", "", ""
        ).__dict__.keys()
        extra_data = {
            k: v
            for k, v in record.__dict__.items()
            if k not in standard_attrs and not k.startswith("_")
        }
        if extra_data:
            log_entry.update(extra_data)

        # drop the well-known extras when they were never supplied
        for key in _EXTRA_FIELDS:
            if log_entry.get(key) is None:
                log_entry.pop(key, None)

        return json.dumps(log_entry, default=str)


def _normalise_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logging(name: str, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Configures and returns a logger instance. Supports color or JSON format.

    Args:
        name (str): The name for the logger.
        level (int | str): The logging level, e.g. ``logging.DEBUG`` or ``"DEBUG"``.

    Returns:
        logging.Logger: The configured logger instance.
    """
    level = _normalise_level(level)
    logger = logging.getLogger(name)
    _CONFIGURED.add(name)

    if not logger.handlers or logger.level == logging.NOTSET or level < logger.level:
        logger.setLevel(level)

    if not logger.handlers:
        if USE_JSON_LOGGING:
            handler = logging.StreamHandler(sys.stdout)
            formatter = JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S%z")
        else:
            handler = colorlog.StreamHandler(sys.stdout)
            formatter = colorlog.ColoredFormatter(
                "%(log_color)s[%(levelname)-8s] %(name)s: %(message)s%(reset)s",
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
                style="%",
            )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def set_log_level(level: Union[int, str]) -> int:
    """Apply ``level`` to every logger created so far through ``setup_logging``."""
    resolved = _normalise_level(level)
    for name in _CONFIGURED:
        logging.getLogger(name).setLevel(resolved)
    return resolved
