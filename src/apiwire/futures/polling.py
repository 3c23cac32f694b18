"""异步结果轮询：将服务端请求 ID 转换为可等待的句柄。

Future polling engine.

A server-side async operation is identified by an opaque request id.
``FuturePoller.poll`` starts a session as an asyncio task and returns a
PollHandle at once; the session repeatedly calls the retrieve endpoint
until the operation completes, fails, or the poll-time budget runs out.

Per attempt classification:
- ``type: try_again`` keeps polling, reporting any queue state first
- ``type: completed|success``, ``status: complete`` or a ``result`` key
  completes with the whole payload
- ``type: failed|error`` with an ``error`` payload fails
- HTTP 410 fails with FutureExpiredError
- HTTP 408, 429 and 5xx, transport timeouts and connection errors retry
- any other non-2xx or raised error fails
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from apiwire.core.pipeline import CallOptions, RequestPipeline, error_type_name
from apiwire.errors import (
    ApiStatusError,
    ApiWireError,
    AwaitTimeoutError,
    CancelledError,
    ConfigurationError,
    ConnectionError,
    DecodeError,
    FutureExpiredError,
    PollTimeoutError,
    RequestFailedError,
    TimeoutError,
    TransportError,
    ValidationError,
)
from apiwire.futures.backoff import BackoffPolicy
from apiwire.telemetry import (
    POLL_ATTEMPT,
    POLL_COMPLETE,
    POLL_ERROR,
    POLL_START,
    QUEUE_STATE_CHANGE,
    get_logger,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apiwire.core.context import Context
    from apiwire.manifest.models import Endpoint, Manifest

logger = get_logger("apiwire.futures")

_TRANSIENT_STATUSES = frozenset({408, 429})
_PAUSED_STATES_SLEEP_MS = 1000
_SUCCESS_TYPES = frozenset({"completed", "success"})
_FAILURE_TYPES = frozenset({"failed", "error"})
_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


class QueueState(str, Enum):
    """Server-reported queue condition carried by try-again responses."""

    ACTIVE = "active"
    PAUSED_RATE_LIMIT = "paused_rate_limit"
    PAUSED_CAPACITY = "paused_capacity"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> QueueState | None:
        """Parse a wire value; unrecognized strings map to UNKNOWN."""
        if value is None:
            return None
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class QueueStateChange:
    """Passed to ``on_state_change`` on every try-again with a queue state and on HTTP 408."""

    request_id: str
    queue_state: QueueState
    reason: str | None = None
    previous: QueueState | None = None


@dataclass(frozen=True)
class PollOptions:
    """Options for one poll session.

    Attributes:
        retrieve_endpoint: Endpoint id of the retrieve call
        backoff: Delay curve between attempts
        max_poll_time_ms: Overall budget, None for unbounded
        on_state_change: Callback (sync or async) receiving QueueStateChange
        use_cache: Read and populate the context's future result cache
        sleep: Coroutine taking seconds, ``asyncio.sleep`` by default
        clock: Monotonic clock in seconds, ``time.monotonic`` by default
    """

    retrieve_endpoint: str | None = None
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    max_poll_time_ms: int | None = 300_000
    on_state_change: Callable[[QueueStateChange], Any] | None = None
    use_cache: bool = True
    sleep: Callable[[float], Awaitable[Any]] | None = None
    clock: Callable[[], float] | None = None

    def evolve(self, **changes: Any) -> PollOptions:
        return replace(self, **changes)


@dataclass(frozen=True)
class FutureResult:
    """Terminal outcome of a poll session or a combined wait.

    Attributes:
        ok: Whether the operation completed successfully
        value: Completed payload (or transformed values for combine)
        error: Terminal error
        request_id: Request id polled, None for combined results
        attempts: Retrieve calls made
        elapsed_ms: Session wall time
        from_cache: Served from the result cache without a network call
    """

    ok: bool
    value: Any = None
    error: ApiWireError | None = None
    request_id: str | None = None
    attempts: int = 0
    elapsed_ms: float = 0.0
    from_cache: bool = False

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any, **stats: Any) -> FutureResult:
        return cls(ok=True, value=value, **stats)

    @classmethod
    def failure(cls, error: ApiWireError, **stats: Any) -> FutureResult:
        return cls(ok=False, error=error, **stats)

    def unwrap(self) -> Any:
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value


@dataclass
class PollSession:
    """Mutable state of one running session, private to its task."""

    request_id: str
    endpoint: Endpoint
    options: PollOptions
    started_at: float
    clock: Callable[[], float]
    attempts: int = 0
    queue_state: QueueState | None = None

    def elapsed_ms(self) -> float:
        return (self.clock() - self.started_at) * 1000

    def remaining_ms(self) -> float | None:
        if self.options.max_poll_time_ms is None:
            return None
        return max(0.0, self.options.max_poll_time_ms - self.elapsed_ms())

    def exhausted(self) -> bool:
        remaining = self.remaining_ms()
        return remaining is not None and remaining <= 0


@dataclass(frozen=True)
class _Outcome:
    """Classification of one attempt."""

    done: bool
    value: Any = None
    error: ApiWireError | None = None
    delay_ms: int | None = None

    @classmethod
    def retry(cls, delay_ms: int | None = None) -> _Outcome:
        return cls(done=False, delay_ms=delay_ms)


class PollHandle:
    """Caller-side handle to a running (or already resolved) session.

    Example:
        >>> handle = poller.poll("req-123", PollOptions(retrieve_endpoint="futures.retrieve"))
        >>> result = await handle.wait(timeout=60)
        >>> if result.ok:
        ...     print(result.value["result"])
    """

    def __init__(
        self,
        request_id: str,
        *,
        task: asyncio.Task[FutureResult] | None = None,
        session: PollSession | None = None,
        result: FutureResult | None = None,
        poller: FuturePoller | None = None,
    ) -> None:
        self.request_id = request_id
        self._task = task
        self._session = session
        self._result = result
        self._poller = poller

    def done(self) -> bool:
        """Whether the session reached a terminal state or was cancelled."""
        return self._result is not None or (self._task is not None and self._task.done())

    def remaining_budget(self) -> float | None:
        """Seconds left in the session's poll budget, None for unbounded."""
        if self._result is not None or self._session is None:
            return 0.0
        remaining = self._session.remaining_ms()
        return None if remaining is None else remaining / 1000

    def cancel(self) -> bool:
        """Stop the session.

        An in-flight retrieve call may still finish and populate the cache.

        Returns:
            True if a running session was cancelled
        """
        if self.done():
            return False
        assert self._task is not None
        self._task.cancel()
        self._result = FutureResult.failure(
            CancelledError(self.request_id), request_id=self.request_id
        )
        return True

    async def wait(self, timeout: float | None = None) -> FutureResult:
        """Wait for the terminal result.

        A timeout ends only this wait; the session keeps running and may
        still cache a result. The cache is checked once more before
        giving up.

        Args:
            timeout: Seconds to wait, None to wait for the session

        Returns:
            FutureResult; AwaitTimeoutError on timeout
        """
        if self._result is not None:
            return self._result
        assert self._task is not None
        if self._task.done() and not self._task.cancelled():
            return self._task.result()
        try:
            return await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            return self._after_timeout(timeout)
        except asyncio.CancelledError:
            if self._result is not None and self._task.cancelled():
                return self._result
            raise

    def _after_timeout(self, timeout: float | None) -> FutureResult:
        assert self._task is not None
        if self._task.done() and not self._task.cancelled():
            return self._task.result()
        if self._poller is not None and self._session is not None and self._session.options.use_cache:
            cached = self._poller.cached(self.request_id)
            if cached is not None:
                return cached
        return FutureResult.failure(
            AwaitTimeoutError(self.request_id, timeout or 0.0), request_id=self.request_id
        )

    def __await__(self) -> Any:
        return self.wait().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "polling"
        return f"PollHandle(request_id={self.request_id!r}, {state})"


class FuturePoller:
    """Starts poll sessions against a manifest's retrieve endpoints.

    Retrieve calls reuse the pipeline's request construction but go straight
    to the transport; polling has its own backoff and budget.
    """

    def __init__(
        self,
        manifest: Manifest,
        context: Context,
        *,
        pipeline: RequestPipeline | None = None,
    ) -> None:
        self.manifest = manifest
        self.context = context
        self.pipeline = pipeline or RequestPipeline(manifest, context)
        self._sessions: dict[asyncio.Task[FutureResult], PollHandle] = {}

    def cached(self, request_id: str) -> FutureResult | None:
        value = self.context.future_cache.get(self.context.owner_id, request_id)
        if value is None:
            return None
        return FutureResult.success(value, request_id=request_id, from_cache=True)

    def poll(self, request_id: str, options: PollOptions | None = None) -> PollHandle:
        """Start polling and return a handle immediately.

        Must be called from a running event loop.

        Raises:
            ConfigurationError: If no retrieve endpoint or transport is configured
            UnknownEndpointError: If the retrieve endpoint is not declared
        """
        options = options or PollOptions()
        if options.use_cache:
            cached = self.cached(request_id)
            if cached is not None:
                logger.debug("Future served from cache", request_id=request_id)
                return PollHandle(request_id, result=cached, poller=self)

        if not options.retrieve_endpoint:
            raise ConfigurationError("PollOptions.retrieve_endpoint is required", setting="retrieve_endpoint")
        endpoint = self.manifest.fetch_endpoint(options.retrieve_endpoint)
        self.context.require_transport()

        clock = options.clock or time.monotonic
        session = PollSession(
            request_id=request_id,
            endpoint=endpoint,
            options=options,
            started_at=clock(),
            clock=clock,
        )
        self.context.telemetry.emit(POLL_START, {"request_id": request_id, "endpoint_id": endpoint.id})
        task = asyncio.create_task(self._run(session), name=f"apiwire-poll-{request_id}")
        handle = PollHandle(request_id, task=task, session=session, poller=self)
        self._sessions[task] = handle
        task.add_done_callback(self._forget)
        return handle

    def _forget(self, task: asyncio.Task[FutureResult]) -> None:
        self._sessions.pop(task, None)

    @property
    def active(self) -> int:
        """Number of sessions still running."""
        return len(self._sessions)

    async def cancel_all(self) -> int:
        """Cancel every running session and wait for their tasks to unwind.

        Returns:
            Number of sessions cancelled
        """
        sessions = list(self._sessions.items())
        cancelled = sum(1 for _, handle in sessions if handle.cancel())
        if sessions:
            await asyncio.gather(*(task for task, _ in sessions), return_exceptions=True)
        return cancelled

    async def _run(self, session: PollSession) -> FutureResult:
        options = session.options
        sleep = options.sleep or asyncio.sleep
        request_id = session.request_id

        while True:
            if session.exhausted():
                error = PollTimeoutError(request_id, session.elapsed_ms(), session.attempts)
                return self._finish(session, error=error)

            self.context.telemetry.emit(POLL_ATTEMPT, {"request_id": request_id, "attempt": session.attempts})
            try:
                outcome = await self._attempt(session)
            except Exception as exc:
                session.attempts += 1
                logger.warning("Poll attempt crashed", request_id=request_id, error=repr(exc))
                error = TransportError(f"Poll attempt failed: {exc}", cause=exc)
                return self._finish(session, error=error)
            session.attempts += 1

            if outcome.done:
                return self._finish(session, value=outcome.value, error=outcome.error)

            delay_ms = outcome.delay_ms
            if delay_ms is None:
                delay_ms = options.backoff.delay_ms(session.attempts - 1)
            remaining = session.remaining_ms()
            if remaining is not None:
                delay_ms = min(delay_ms, remaining)
            await sleep(delay_ms / 1000)

    def _finish(self, session: PollSession, *, value: Any = None, error: ApiWireError | None = None) -> FutureResult:
        request_id = session.request_id
        elapsed = session.elapsed_ms()
        measurements = {"elapsed_ms": elapsed, "attempts": session.attempts}
        if error is not None:
            self.context.telemetry.emit(
                POLL_ERROR, {"request_id": request_id, "reason": error_type_name(error)}, measurements
            )
            logger.debug("Future failed", request_id=request_id, error=str(error))
            return FutureResult.failure(error, request_id=request_id, attempts=session.attempts, elapsed_ms=elapsed)

        if session.options.use_cache:
            self.context.future_cache.put(self.context.owner_id, request_id, value)
        self.context.telemetry.emit(POLL_COMPLETE, {"request_id": request_id}, measurements)
        logger.debug("Future completed", request_id=request_id, attempts=session.attempts)
        return FutureResult.success(value, request_id=request_id, attempts=session.attempts, elapsed_ms=elapsed)

    async def _attempt(self, session: PollSession) -> _Outcome:
        endpoint = session.endpoint
        request_id = session.request_id
        payload = None if endpoint.method.upper() in _BODYLESS_METHODS else {"request_id": request_id}
        try:
            request = self.pipeline.build_request(
                endpoint,
                payload,
                CallOptions(path_params={"request_id": request_id}),
                pool_type="futures",
            )
            response = await self.context.require_transport().send(request)
        except (TimeoutError, ConnectionError) as exc:
            logger.warning("Transient poll failure", request_id=request_id, error=str(exc))
            return _Outcome.retry()
        except ApiWireError as exc:
            return _Outcome(done=True, error=exc)

        status = response.status
        if status == 410:
            body = self._decode_quietly(response.body)
            return _Outcome(done=True, error=FutureExpiredError(request_id, body))
        if status == 408:
            body = self._decode_quietly(response.body)
            if not (isinstance(body, Mapping) and "queue_state" in body):
                body = {"queue_state": QueueState.UNKNOWN.value, "queue_state_reason": "request_timeout"}
            await self._report_queue_state(session, body)
        if status in _TRANSIENT_STATUSES or status >= 500:
            logger.warning("Transient poll status", request_id=request_id, status=status)
            return _Outcome.retry()
        if not response.ok:
            body = self._decode_quietly(response.body)
            return _Outcome(done=True, error=ApiStatusError.from_response(status, body, response.headers))

        try:
            payload = self.context.serializer.decode(response.body, self.context.schema(endpoint.response))
        except (DecodeError, ValidationError) as exc:
            return _Outcome(done=True, error=exc)
        return await self._classify(session, payload)

    def _decode_quietly(self, body: bytes) -> Any:
        try:
            return self.context.serializer.decode(body)
        except DecodeError:
            return body.decode("utf-8", errors="replace") or None

    async def _classify(self, session: PollSession, payload: Any) -> _Outcome:
        if not isinstance(payload, Mapping):
            return _Outcome.retry()
        kind = str(payload.get("type", "")).lower()

        if kind == "try_again":
            await self._report_queue_state(session, payload)
            retry_after = payload.get("retry_after_ms")
            if isinstance(retry_after, (int, float)) and not isinstance(retry_after, bool) and retry_after >= 0:
                return _Outcome.retry(int(retry_after))
            if QueueState.parse(payload.get("queue_state")) in (QueueState.PAUSED_RATE_LIMIT, QueueState.PAUSED_CAPACITY):
                return _Outcome.retry(_PAUSED_STATES_SLEEP_MS)
            return _Outcome.retry()
        if kind in _SUCCESS_TYPES or payload.get("status") == "complete" or "result" in payload:
            return _Outcome(done=True, value=dict(payload))
        if kind in _FAILURE_TYPES and "error" in payload:
            return _Outcome(done=True, error=RequestFailedError(session.request_id, payload["error"]))
        return _Outcome.retry()

    async def _report_queue_state(self, session: PollSession, payload: Mapping[str, Any]) -> None:
        state = QueueState.parse(payload.get("queue_state"))
        if state is None:
            return
        reason = payload.get("queue_state_reason") or payload.get("reason")
        previous = session.queue_state
        change = QueueStateChange(session.request_id, state, reason, previous)

        callback = session.options.on_state_change
        if callback is not None:
            outcome = callback(change)
            if inspect.isawaitable(outcome):
                await outcome

        if state != previous:
            session.queue_state = state
            self.context.telemetry.emit(
                QUEUE_STATE_CHANGE,
                {
                    "request_id": session.request_id,
                    "queue_state": state.value,
                    "previous": previous.value if previous else None,
                    "reason": reason,
                },
            )
