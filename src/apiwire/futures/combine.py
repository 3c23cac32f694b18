"""
Combining several in-flight futures.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from apiwire.futures.polling import FutureResult

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from apiwire.futures.polling import PollHandle


class CombinedFuture:
    """Waits on an ordered list of handles under one timeout.

    Handles are awaited concurrently. The first failure observed is
    returned as-is and ``transform`` is never called; otherwise
    ``transform`` receives the successful values in input order.

    Each handle's wait is bounded by the smaller of the time left on the
    combined timeout and that handle's own remaining poll budget.

    Example:
        >>> combined = CombinedFuture([h1, h2], transform=lambda vs: [v["result"] for v in vs], timeout=30)
        >>> result = await combined.wait()
    """

    def __init__(
        self,
        handles: Sequence[PollHandle],
        transform: Callable[[list[Any]], Any] | None = None,
        timeout: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.handles = list(handles)
        self.transform = transform
        self.timeout = timeout
        self._clock = clock

    def _limit(self, handle: PollHandle, deadline: float | None) -> float | None:
        limits: list[float] = []
        budget = handle.remaining_budget()
        if budget is not None:
            limits.append(budget)
        if deadline is not None:
            limits.append(max(0.0, deadline - self._clock()))
        return min(limits) if limits else None

    async def wait(self) -> FutureResult:
        """Wait for every handle, stopping at the first failure."""
        deadline = self._clock() + self.timeout if self.timeout is not None else None

        async def wait_one(handle: PollHandle) -> FutureResult:
            return await handle.wait(self._limit(handle, deadline))

        tasks = [asyncio.ensure_future(wait_one(handle)) for handle in self.handles]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if not result.ok:
                    assert result.error is not None
                    return FutureResult.failure(result.error, request_id=result.request_id)
        finally:
            # Only the waits stop here; the sessions themselves keep running.
            for task in tasks:
                task.cancel()

        values = [task.result().value for task in tasks]
        if self.transform is not None:
            return FutureResult.success(self.transform(values))
        return FutureResult.success(values)

    def __await__(self) -> Any:
        return self.wait().__await__()


async def combine(
    handles: Sequence[PollHandle],
    transform: Callable[[list[Any]], Any] | None = None,
    timeout: float | None = None,
) -> FutureResult:
    """Await several handles together.

    Args:
        handles: Poll handles, in the order values should be passed on
        transform: Applied to the list of successful values
        timeout: Overall seconds to wait, None for no limit

    Returns:
        FutureResult with the transformed values or the first failure
    """
    return await CombinedFuture(handles, transform, timeout).wait()
