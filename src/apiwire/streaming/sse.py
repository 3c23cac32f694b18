"""
Stream decoders.

Implements:
- SSEDecoder: Server-Sent Events
- JsonLinesDecoder: JSON Lines / NDJSON

Both decoders are immutable values holding only the bytes that have not yet
formed a complete event. ``feed`` returns the completed events and a new
decoder, so splitting a stream at arbitrary points yields the same events
as feeding it whole.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from apiwire.streaming.event import StreamEvent

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

_LINE_END = re.compile(rb"\r\n|\r|\n")


def _as_bytes(chunk: bytes | str) -> bytes:
    return chunk.encode("utf-8") if isinstance(chunk, str) else chunk


def _decode_event(lines: list[bytes]) -> StreamEvent | None:
    event: str | None = None
    data: list[str] = []
    event_id: str | None = None
    retry: int | None = None
    seen = False

    for raw in lines:
        if raw.startswith(b":"):
            continue
        name, sep, value = raw.partition(b":")
        if sep and value.startswith(b" "):
            value = value[1:]
        text = value.decode("utf-8", errors="replace")
        field = name.decode("utf-8", errors="replace")

        if field == "data":
            data.append(text)
        elif field == "event":
            event = text
        elif field == "id":
            event_id = text
        elif field == "retry":
            retry = int(text) if text.isascii() and text.isdigit() else None
        else:
            continue
        seen = True

    if not seen:
        return None
    return StreamEvent(event=event or "message", data="\n".join(data), id=event_id, retry=retry)


@dataclass(frozen=True)
class SSEDecoder:
    """Server-Sent Events decoder.

    Parses:
    ```
    event: update
    id: 7
    data: {"key": "value"}

    ```

    Example:
        >>> events, decoder = SSEDecoder().feed(b"data: hel")
        >>> events
        []
        >>> events, decoder = decoder.feed(b"lo\\n\\n")
        >>> events[0].data
        'hello'
    """

    buffer: bytes = b""

    def feed(self, chunk: bytes | str) -> tuple[list[StreamEvent], SSEDecoder]:
        """Feed a chunk and collect every event it completes.

        Args:
            chunk: Raw bytes (or text) from the stream

        Returns:
            Completed events in order, and the decoder to feed next
        """
        data = self.buffer + _as_bytes(chunk)
        events: list[StreamEvent] = []
        block: list[bytes] = []
        consumed = 0
        pos = 0

        for match in _LINE_END.finditer(data):
            line = data[pos : match.start()]
            pos = match.end()
            if line:
                block.append(line)
                continue
            # Blank line: the block so far is one event.
            event = _decode_event(block)
            if event is not None:
                events.append(event)
            block = []
            consumed = pos

        return events, SSEDecoder(data[consumed:])

    def flush(self) -> list[StreamEvent]:
        """Events still pending at end of stream."""
        events, _ = self.feed(b"\n\n")
        return events


def feed(decoder: SSEDecoder, chunk: bytes | str) -> tuple[list[StreamEvent], SSEDecoder]:
    """Functional form of ``SSEDecoder.feed``."""
    return decoder.feed(chunk)


@dataclass(frozen=True)
class JsonLinesDecoder:
    """JSON Lines (NDJSON) decoder.

    Each non-blank line becomes a ``message`` event whose ``data`` is the
    line text; use ``StreamEvent.json()`` to parse it.
    """

    buffer: bytes = b""

    def feed(self, chunk: bytes | str) -> tuple[list[StreamEvent], JsonLinesDecoder]:
        data = self.buffer + _as_bytes(chunk)
        events: list[StreamEvent] = []
        pos = 0
        for match in _LINE_END.finditer(data):
            line = data[pos : match.start()].strip()
            pos = match.end()
            if line:
                events.append(StreamEvent(data=line.decode("utf-8", errors="replace")))
        return events, JsonLinesDecoder(data[pos:])

    def flush(self) -> list[StreamEvent]:
        events, _ = self.feed(b"\n")
        return events


async def decode_stream(
    chunks: AsyncIterable[bytes],
    decoder: SSEDecoder | JsonLinesDecoder | None = None,
) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream into events, flushing at the end.

    Args:
        chunks: Async iterable of raw bytes
        decoder: Starting decoder, a fresh SSEDecoder by default

    Yields:
        StreamEvent instances in stream order
    """
    state = decoder or SSEDecoder()
    async for chunk in chunks:
        events, state = state.feed(chunk)
        for event in events:
            yield event
    for event in state.flush():
        yield event
