"""
EventStream: decoded events from a live streaming response.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from apiwire.streaming.sse import JsonLinesDecoder, SSEDecoder, decode_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from apiwire.core.request import StreamResponse
    from apiwire.streaming.event import StreamEvent


class EventStream:
    """Async iterator over the events of one streaming response.

    The stream must be consumed from a single task. Leaving the ``async
    with`` block (or calling ``aclose``) releases the connection.

    Example:
        >>> async with result.value as events:
        ...     async for event in events:
        ...         print(event.event, event.json())
    """

    def __init__(
        self,
        response: StreamResponse,
        *,
        stream_format: str = "sse",
        event_types: tuple[str, ...] | list[str] = (),
        endpoint_id: str | None = None,
    ) -> None:
        self.response = response
        self.endpoint_id = endpoint_id
        self._event_types = frozenset(event_types)
        decoder = JsonLinesDecoder() if stream_format == "json_lines" else SSEDecoder()
        self._events = decode_stream(response.chunks, decoder)
        self._closed = False

    @property
    def status(self) -> int:
        return self.response.status

    @property
    def headers(self) -> dict[str, str]:
        return self.response.headers

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        try:
            async for event in self._events:
                if self._event_types and event.event not in self._event_types:
                    continue
                yield event
        finally:
            await self.aclose()

    async def collect(self) -> list[StreamEvent]:
        """Read the stream to the end."""
        return [event async for event in self]

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self.response.aclose()

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
