"""
Telemetry module for apiwire.

Provides structured logging and the lifecycle event port.
"""

from apiwire.telemetry.events import (
    POLL_ATTEMPT,
    POLL_COMPLETE,
    POLL_ERROR,
    POLL_START,
    QUEUE_STATE_CHANGE,
    REQUEST_EXCEPTION,
    REQUEST_START,
    REQUEST_STOP,
    LoggingTelemetry,
    NoopTelemetry,
    RecordedEvent,
    RecordingTelemetry,
    Telemetry,
)
from apiwire.telemetry.logger import (
    ApiWireLogger,
    JsonFormatter,
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    TextFormatter,
    get_log_context,
    get_logger,
    log_context,
)

__all__ = [
    "ApiWireLogger",
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "LoggingTelemetry",
    "NoopTelemetry",
    "POLL_ATTEMPT",
    "POLL_COMPLETE",
    "POLL_ERROR",
    "POLL_START",
    "QUEUE_STATE_CHANGE",
    "REQUEST_EXCEPTION",
    "REQUEST_START",
    "REQUEST_STOP",
    "RecordedEvent",
    "RecordingTelemetry",
    "SensitiveDataMasker",
    "Telemetry",
    "TextFormatter",
    "get_log_context",
    "get_logger",
    "log_context",
]
