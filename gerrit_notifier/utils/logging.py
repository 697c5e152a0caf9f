"""Structured logging for event processing: per-event context, timing and redaction."""

import inspect
import logging
import re
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Dict, Mapping, Optional

from gerrit_notifier.utils.logging_config import LoggingConfig, get_logger


# Fields attached to every log line while one event is being processed.
_log_context: ContextVar[Mapping[str, Any]] = ContextVar("log_context", default={})

_EMAIL = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_SLACK_TOKEN = re.compile(r"xox[abeprs]-[A-Za-z0-9-]+")
_URL_CREDENTIALS = re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@")
_WEBHOOK_SECRET = re.compile(r"(hooks\.slack\.com/services/[^/\s]+/[^/\s]+/)[A-Za-z0-9]+")


def generate_correlation_id() -> str:
    return f"evt_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    return _log_context.get().get("correlation_id")


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


@contextmanager
def correlation_context(correlation_id: Optional[str] = None, **fields: Any):
    """
    Scope log fields to one unit of work.

    Every StructuredLogger call inside the block carries the correlation ID
    and the given fields. Nested blocks inherit the outer fields and get
    their own ID unless one is passed; the outer context is restored on exit.
    """
    context = dict(_log_context.get())
    context.update(fields)
    context["correlation_id"] = correlation_id or generate_correlation_id()
    token = _log_context.set(context)
    try:
        yield context["correlation_id"]
    finally:
        _log_context.reset(token)


def redact(text: str) -> str:
    """Strip URL credentials, webhook secrets, Slack tokens and emails from text."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text
    text = _URL_CREDENTIALS.sub(r"\1[REDACTED]@", text)
    text = _WEBHOOK_SECRET.sub(r"\1[REDACTED]", text)
    text = _SLACK_TOKEN.sub("[REDACTED_SLACK_TOKEN]", text)
    return _EMAIL.sub("[REDACTED_EMAIL]", text)


def mask_email(email: str) -> str:
    """Keep the first character and the domain of an address."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not email or "@" not in email:
        return email
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def content_preview(text: str, max_length: int = 200) -> Optional[str]:
    """Loggable excerpt of a comment or raw line; None when content logging is off."""
    if not text or not LoggingConfig.LOG_MESSAGE_CONTENT:
        return None
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return redact(text)


class StructuredLogger:
    """Takes log fields as keyword arguments and adds the current log context."""

    def __init__(self, logger: logging.Logger, **bound: Any):
        self.logger = logger
        self._bound = bound

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a logger that always adds these fields."""
        return StructuredLogger(self.logger, **{**self._bound, **fields})

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extra = current_log_context()
        extra.update(self._bound)
        extra.update(fields)
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=True, **fields)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation: str, logger: Optional[StructuredLogger] = None, **fields: Any):
    """Log how long the block took; warn past LOG_SLOW_OPERATION_THRESHOLD_MS."""
    log = logger or get_structured_logger(__name__)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        log.debug("Operation finished", operation=operation, elapsed_ms=elapsed_ms, **fields)
        threshold = LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS
        if elapsed_ms > threshold:
            log.warning(
                "Slow operation",
                operation=operation,
                elapsed_ms=elapsed_ms,
                threshold_ms=threshold,
                **fields
            )


def timed(operation: Optional[str] = None, logger: Optional[StructuredLogger] = None):
    """Decorator form of log_timing for plain and async functions."""
    def decorator(func: Callable) -> Callable:
        name = operation or func.__qualname__
        log = logger or get_structured_logger(func.__module__)

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                with log_timing(name, logger=log):
                    return await func(*args, **kwargs)
        else:
            @wraps(func)
            def wrapper(*args, **kwargs):
                with log_timing(name, logger=log):
                    return func(*args, **kwargs)
        return wrapper

    return decorator
