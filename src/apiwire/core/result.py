"""
Call result value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from apiwire.errors import ApiWireError

T = TypeVar("T")


@dataclass(frozen=True)
class CallResult(Generic[T]):
    """Outcome of one logical call: a value or a classified error.

    Attributes:
        ok: Whether the call succeeded
        value: Decoded (and unwrapped) body on success
        error: Classified error on failure
        status: Final HTTP status, None if no response was received
        retry_count: Attempts beyond the first
        elapsed_ms: Wall time of the whole call
        headers: Final response headers
    """

    ok: bool
    value: T | None = None
    error: ApiWireError | None = None
    status: int | None = None
    retry_count: int = 0
    elapsed_ms: float = 0.0
    headers: dict[str, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: T, **stats: Any) -> CallResult[T]:
        return cls(ok=True, value=value, **stats)

    @classmethod
    def failure(cls, error: ApiWireError, **stats: Any) -> CallResult[T]:
        return cls(ok=False, error=error, **stats)

    def unwrap(self) -> T:
        """Return the value or raise the carried error.

        Example:
            >>> result = await client.call("models.list")
            >>> models = result.unwrap()
        """
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]
