"""Logging setup: JSON or text lines on stdout, configured from the environment."""

import logging
import os
import sys
from typing import Optional, TextIO

from pythonjsonlogger import jsonlogger


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


class LoggingConfig:
    """Logging settings, read once from the environment at import."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
    LOG_MESSAGE_CONTENT = _env_flag("LOG_MESSAGE_CONTENT", "true")
    LOG_MASK_SENSITIVE = _env_flag("LOG_MASK_SENSITIVE", "true")
    LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "1000"))

    JSON_FIELDS = "%(timestamp)s %(levelname)s %(name)s %(message)s"
    TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
    # These log every request at INFO.
    QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")

    @classmethod
    def formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return jsonlogger.JsonFormatter(cls.JSON_FIELDS, timestamp=True)
        return logging.Formatter(cls.TEXT_FORMAT)

    @classmethod
    def setup_logging(cls, level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
        """Install a single handler on the root logger.

        An explicit ``level`` (from the command line) wins over ``LOG_LEVEL``.
        """
        if level:
            cls.LOG_LEVEL = level.upper()
        log_level = logging.getLevelName(cls.LOG_LEVEL)
        if not isinstance(log_level, int):
            log_level = logging.INFO

        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(cls.formatter())

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

        for name in cls.QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
