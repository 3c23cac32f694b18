"""
Structured logging for apiwire.

Loggers accept keyword fields, mask credentials, and pick up a
call-scoped context (endpoint, request id) from a context variable.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterator

_log_context: ContextVar[dict[str, Any] | None] = ContextVar(
    "apiwire_log_context", default=None
)

_REDACTED = "***REDACTED***"
_SENSITIVE_KEYS = ("authorization", "api_key", "api-key", "apikey", "token", "secret", "password")


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    def to_logging_level(self) -> int:
        return getattr(logging, self.value)


@dataclass
class LogContext:
    """Call-scoped logging context.

    Attributes:
        client_id: Owning client identity
        endpoint_id: Manifest endpoint being called
        request_id: Server-side request id (futures)
        extra: Additional context fields
    """

    client_id: str | None = None
    endpoint_id: str | None = None
    request_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            k: v
            for k, v in (
                ("client_id", self.client_id),
                ("endpoint_id", self.endpoint_id),
                ("request_id", self.request_id),
            )
            if v
        }
        result.update(self.extra)
        return result


def get_log_context() -> LogContext:
    """Get the logging context of the current task."""
    data = dict(_log_context.get() or {})
    known = {k: data.pop(k) for k in ("client_id", "endpoint_id", "request_id") if k in data}
    return LogContext(**known, extra=data)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Layer fields onto the logging context for the duration of a block.

    Example:
        >>> with log_context(endpoint_id="jobs.create"):
        ...     logger.debug("sending")
    """
    merged = {**(_log_context.get() or {}), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


class SensitiveDataMasker:
    """Masks credentials in log messages and structured fields."""

    DEFAULT_PATTERNS: ClassVar[list[tuple[str, str]]] = [
        (r"(Bearer\s+)([^\s\"']+)", rf"\1{_REDACTED}"),
        (r"(authorization[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}]+)", rf"\1{_REDACTED}"),
        (r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}]+)", rf"\1{_REDACTED}"),
        (r"([A-Z][A-Z0-9_]*_API_KEY=)([^\s]+)", rf"\1{_REDACTED}"),
    ]

    def __init__(self, patterns: list[tuple[str, str]] | None = None) -> None:
        self._patterns = [
            (re.compile(p, re.IGNORECASE), r)
            for p, r in (patterns or self.DEFAULT_PATTERNS)
        ]

    def mask(self, text: str) -> str:
        """Mask sensitive data in text."""
        for pattern, replacement in self._patterns:
            text = pattern.sub(replacement, text)
        return text

    def mask_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Mask sensitive values in a (possibly nested) dictionary."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if any(s in key.lower() for s in _SENSITIVE_KEYS):
                result[key] = _REDACTED
            elif isinstance(value, str):
                result[key] = self.mask(value)
            elif isinstance(value, dict):
                result[key] = self.mask_dict(value)
            else:
                result[key] = value
        return result


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def __init__(self, masker: SensitiveDataMasker | None = None) -> None:
        super().__init__()
        self._masker = masker or SensitiveDataMasker()

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": self._masker.mask(record.getMessage()),
        }
        if context_dict := get_log_context().to_dict():
            log_data["context"] = context_dict
        if hasattr(record, "extra_fields"):
            log_data.update(self._masker.mask_dict(record.extra_fields))
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable ``key=value`` formatter."""

    def __init__(self, masker: SensitiveDataMasker | None = None) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self._masker = masker or SensitiveDataMasker()

    def format(self, record: logging.LogRecord) -> str:
        original_msg = record.msg
        record.msg = self._masker.mask(str(record.msg))
        try:
            result = super().format(record)
        finally:
            record.msg = original_msg

        fields = {**get_log_context().to_dict()}
        if hasattr(record, "extra_fields"):
            fields.update(self._masker.mask_dict(record.extra_fields))
        if fields:
            result = f"{result} | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return result


class ApiWireLogger:
    """Logger with structured keyword fields.

    Example:
        >>> logger = ApiWireLogger.get_logger("apiwire.pipeline")
        >>> logger.info("Request finished", status=200, duration_ms=12.5)
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        format: str = "text",
        stream: Any = None,
        masker: SensitiveDataMasker | None = None,
    ) -> None:
        """Install a handler on the ``apiwire`` logger hierarchy.

        Args:
            level: Log level
            format: Output format ('json' or 'text')
            stream: Output stream (default: stderr)
            masker: Sensitive data masker
        """
        formatter: logging.Formatter = (
            JsonFormatter(masker=masker) if format == "json" else TextFormatter(masker=masker)
        )
        root = logging.getLogger("apiwire")
        if cls._handler is not None:
            root.removeHandler(cls._handler)
        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(formatter)
        root.addHandler(cls._handler)
        root.setLevel(level.to_logging_level())

    @classmethod
    def get_logger(cls, name: str) -> ApiWireLogger:
        """Get or create a logger.

        Library loggers propagate to the ``apiwire`` root and carry no
        handler of their own until ``configure`` is called.
        """
        if name not in cls._loggers:
            cls._loggers[name] = logging.getLogger(name)
        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _log(self, level: int, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {"extra_fields": kwargs} if kwargs else {}
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)


def get_logger(name: str) -> ApiWireLogger:
    """Get a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return ApiWireLogger.get_logger(name)
