"""
Result cache for completed futures.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any


@dataclass
class CachedResult:
    """A memoized successful poll payload.

    Attributes:
        value: The completed response payload
        created_at: Creation timestamp
        hits: Number of cache hits
    """

    value: Any
    created_at: float
    hits: int = 0

    @property
    def age_seconds(self) -> float:
        return time.time() - self.created_at


class FutureResultCache:
    """Thread-safe store of completed future payloads.

    Entries are keyed by ``(owner_id, request_id)`` so two clients sharing
    a cache never see each other's results. Only successful outcomes are
    stored.

    Example:
        >>> cache = FutureResultCache()
        >>> cache.put("client-1", "req-9", {"result": 42})
        >>> cache.get("client-1", "req-9")
        {'result': 42}
        >>> cache.get("client-2", "req-9") is None
        True
    """

    def __init__(self, max_size: int = 1000) -> None:
        self._entries: dict[tuple[str, str], CachedResult] = {}
        self._max_size = max_size
        self._lock = threading.Lock()

    def get(self, owner_id: str, request_id: str) -> Any | None:
        """Cached payload, or None when absent."""
        with self._lock:
            entry = self._entries.get((owner_id, request_id))
            if entry is None:
                return None
            entry.hits += 1
            return entry.value

    def contains(self, owner_id: str, request_id: str) -> bool:
        with self._lock:
            return (owner_id, request_id) in self._entries

    def put(self, owner_id: str, request_id: str, value: Any) -> None:
        """Store a completed payload, evicting the oldest entry when full."""
        with self._lock:
            key = (owner_id, request_id)
            if key not in self._entries and len(self._entries) >= self._max_size:
                oldest = min(self._entries, key=lambda k: self._entries[k].created_at)
                del self._entries[oldest]
            self._entries[key] = CachedResult(value=value, created_at=time.time())

    def delete(self, owner_id: str, request_id: str) -> bool:
        with self._lock:
            return self._entries.pop((owner_id, request_id), None) is not None

    def clear(self, owner_id: str | None = None) -> None:
        """Drop every entry, or only those of one owner."""
        with self._lock:
            if owner_id is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if k[0] == owner_id]:
                del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
