"""
Stream event value object.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from apiwire.errors import DecodeError


@dataclass(frozen=True)
class StreamEvent:
    """One decoded stream event.

    Attributes:
        event: Event type, ``"message"`` when the stream did not name one
        data: Payload, multiple ``data:`` lines joined with ``\\n``
        id: Last event id, if sent
        retry: Reconnection interval in milliseconds, if sent and numeric
    """

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None

    @property
    def is_message(self) -> bool:
        return self.event == "message"

    def json(self) -> Any:
        """Parse ``data`` as JSON.

        Raises:
            DecodeError: If data is empty or not valid JSON
        """
        if not self.data:
            raise DecodeError(f"Event '{self.event}' has no data to parse")
        try:
            return json.loads(self.data)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Event '{self.event}' data is not valid JSON: {exc}", cause=exc) from exc
