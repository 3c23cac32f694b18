"""
Circuit breakers keyed by circuit name.

Each circuit has three states:
- Closed: Normal operation, calls pass through
- Open: Circuit tripped, calls fail fast
- Half-Open: A limited number of trial calls test recovery
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from apiwire.errors import CircuitOpenError
from apiwire.resilience.ports import CircuitBreaker
from apiwire.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = get_logger("apiwire.resilience.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for one circuit.

    Attributes:
        failure_threshold: Consecutive failures that trip the circuit
        success_threshold: Successes in half-open needed to close
        cooldown_seconds: Time open before trial calls are allowed
        half_open_max_concurrent: Trial calls allowed at once
    """

    failure_threshold: int = 5
    success_threshold: int = 1
    cooldown_seconds: float = 30.0
    half_open_max_concurrent: int = 1

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from APIWIRE_BREAKER_* variables."""
        return cls(
            failure_threshold=int(os.getenv("APIWIRE_BREAKER_FAILURE_THRESHOLD", "5")),
            cooldown_seconds=float(os.getenv("APIWIRE_BREAKER_COOLDOWN_SECS", "30")),
        )


class Circuit:
    """State of a single named circuit."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._config = config
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_in_flight = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        self._check_cooldown()
        return self._state

    def _check_cooldown(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self._config.cooldown_seconds:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info("Circuit state change", circuit=self.name, old=self._state.value, new=new_state.value)
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_in_flight = 0
        else:
            self._failure_count = 0
            self._opened_at = None

    def time_until_retry(self) -> float | None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return max(0.0, self._config.cooldown_seconds - (self._clock() - self._opened_at))

    def admit(self) -> None:
        """Reserve a slot or raise CircuitOpenError."""
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitOpenError(self.name, self.time_until_retry())
        if state == CircuitState.HALF_OPEN:
            if self._half_open_in_flight >= self._config.half_open_max_concurrent:
                raise CircuitOpenError(self.name, 0.0)
            self._half_open_in_flight += 1

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
            self._success_count += 1
            if self._success_count >= self._config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        else:
            self._failure_count = 0

    def record_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED:
            self._failure_count += 1
            if self._failure_count >= self._config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        self._transition_to(CircuitState.CLOSED)

    def __repr__(self) -> str:
        return (
            f"Circuit({self.name!r}, state={self._state.value}, "
            f"failures={self._failure_count}/{self._config.failure_threshold})"
        )


class CircuitBreakerRegistry(CircuitBreaker):
    """Circuit breaker port holding one Circuit per key.

    Example:
        >>> breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3))
        >>> value = await breakers.call("jobs.create", send)
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        overrides: dict[str, CircuitBreakerConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the registry.

        Args:
            config: Configuration for circuits without an override
            overrides: Per-key configuration
            clock: Monotonic clock in seconds
        """
        self._config = config or CircuitBreakerConfig()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._circuits: dict[str, Circuit] = {}
        self._lock = asyncio.Lock()

    def circuit(self, key: str) -> Circuit:
        """Get or create the circuit for a key."""
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = Circuit(key, self._overrides.get(key, self._config), self._clock)
            self._circuits[key] = circuit
        return circuit

    def state(self, key: str) -> CircuitState:
        return self.circuit(key).state

    async def call(self, key: str, work: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            circuit = self.circuit(key)
            circuit.admit()
        try:
            result = await work()
        except Exception:
            async with self._lock:
                circuit.record_failure()
            raise
        async with self._lock:
            circuit.record_success()
        return result

    def reset(self, key: str | None = None) -> None:
        """Close one circuit, or all of them."""
        if key is None:
            targets = list(self._circuits.values())
        else:
            targets = [self._circuits[key]] if key in self._circuits else []
        for circuit in targets:
            circuit.reset()
