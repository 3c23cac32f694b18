"""遥测事件端口：请求与轮询生命周期事件。

Telemetry port for request and polling lifecycle events.

Event names emitted by the runtime:
- request.start, request.stop, request.exception (one call)
- poll.start, poll.attempt, poll.complete, poll.error (one poll session)
- queue.state_change (one queue-state transition)
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from apiwire.telemetry.logger import get_logger

REQUEST_START = "request.start"
REQUEST_STOP = "request.stop"
REQUEST_EXCEPTION = "request.exception"
POLL_START = "poll.start"
POLL_ATTEMPT = "poll.attempt"
POLL_COMPLETE = "poll.complete"
POLL_ERROR = "poll.error"
QUEUE_STATE_CHANGE = "queue.state_change"


class Telemetry(ABC):
    """Receives lifecycle events.

    Implementations must not raise; the runtime calls ``emit`` on the hot
    path of every request.
    """

    @abstractmethod
    def emit(
        self,
        event: str,
        metadata: dict[str, Any],
        measurements: dict[str, float] | None = None,
    ) -> None:
        """Record one event.

        Args:
            event: Dotted event name
            metadata: Descriptive fields (endpoint id, method, outcome, ...)
            measurements: Numeric fields (duration_ms, retry_count, ...)
        """


class NoopTelemetry(Telemetry):
    """Discards all events."""

    def emit(
        self,
        event: str,
        metadata: dict[str, Any],
        measurements: dict[str, float] | None = None,
    ) -> None:
        return None


class LoggingTelemetry(Telemetry):
    """Writes events to the ``apiwire.telemetry`` logger at debug level."""

    def __init__(self, logger_name: str = "apiwire.telemetry") -> None:
        self._logger = get_logger(logger_name)

    def emit(
        self,
        event: str,
        metadata: dict[str, Any],
        measurements: dict[str, float] | None = None,
    ) -> None:
        self._logger.debug(event, **metadata, **(measurements or {}))


@dataclass
class RecordedEvent:
    """One event captured by RecordingTelemetry."""

    name: str
    metadata: dict[str, Any]
    measurements: dict[str, float] = field(default_factory=dict)


class RecordingTelemetry(Telemetry):
    """Keeps events in memory, in emission order.

    Example:
        >>> telemetry = RecordingTelemetry()
        >>> telemetry.emit("request.start", {"endpoint_id": "ping"})
        >>> telemetry.names()
        ['request.start']
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[RecordedEvent] = []

    def emit(
        self,
        event: str,
        metadata: dict[str, Any],
        measurements: dict[str, float] | None = None,
    ) -> None:
        with self._lock:
            self._events.append(RecordedEvent(event, dict(metadata), dict(measurements or {})))

    @property
    def events(self) -> list[RecordedEvent]:
        with self._lock:
            return list(self._events)

    def names(self) -> list[str]:
        """Event names in emission order."""
        return [e.name for e in self.events]

    def named(self, name: str) -> list[RecordedEvent]:
        """All events with the given name."""
        return [e for e in self.events if e.name == name]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
