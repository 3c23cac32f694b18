"""
Streaming decode: SSE and JSON Lines decoders and the EventStream wrapper.
"""

from apiwire.streaming.event import StreamEvent
from apiwire.streaming.sse import JsonLinesDecoder, SSEDecoder, decode_stream, feed
from apiwire.streaming.stream import EventStream

__all__ = [
    "EventStream",
    "JsonLinesDecoder",
    "SSEDecoder",
    "StreamEvent",
    "decode_stream",
    "feed",
]
