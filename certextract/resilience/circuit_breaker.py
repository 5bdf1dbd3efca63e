"""
Named circuit breakers.

A circuit stops calls to a provider that keeps failing so a dead service
costs a fast CircuitOpenError instead of a full timeout and retry cycle.

State machine:
    CLOSED    --failure_threshold consecutive failures-->  OPEN
    OPEN      --reset_timeout elapsed, next call-------->  HALF_OPEN
    HALF_OPEN --half_open_requests consecutive successes-> CLOSED
    HALF_OPEN --any failure---------------------------->  OPEN

Transitions run under the circuit's own lock. The lock is never held while
the protected operation is awaited.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

R = TypeVar("R")

Clock = Callable[[], float]


class CircuitStatus(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds
    half_open_requests: int = 3


@dataclass
class CircuitState:
    """Mutable per-circuit state. Only touched under the owning breaker's lock."""

    state: CircuitStatus = CircuitStatus.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: Optional[float] = None
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """Circuit breaker for one named dependency."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Clock = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState()

    @property
    def state(self) -> CircuitStatus:
        with self._lock:
            return self._state.state

    def snapshot(self) -> CircuitState:
        """Copy of the current state, safe to read outside the lock."""
        with self._lock:
            return CircuitState(**asdict(self._state))

    def _admit(self) -> None:
        """Decide whether a call may proceed, moving OPEN to HALF_OPEN when due."""
        with self._lock:
            state = self._state
            if state.state is CircuitStatus.OPEN:
                elapsed = self._clock() - (state.last_failure_time or 0.0)
                if elapsed < self.config.reset_timeout:
                    raise CircuitOpenError(
                        self.name, retry_in=self.config.reset_timeout - elapsed
                    )
                state.state = CircuitStatus.HALF_OPEN
                state.success_count = 0
                logger.info(f"Circuit '{self.name}' half-open, probing")
            state.total_calls += 1

    def record_success(self) -> None:
        with self._lock:
            state = self._state
            state.total_successes += 1
            state.failure_count = 0
            if state.state is CircuitStatus.HALF_OPEN:
                state.success_count += 1
                if state.success_count >= self.config.half_open_requests:
                    state.state = CircuitStatus.CLOSED
                    state.success_count = 0
                    logger.info(f"Circuit '{self.name}' closed")

    def record_failure(self) -> None:
        with self._lock:
            state = self._state
            state.total_failures += 1
            state.failure_count += 1
            state.last_failure_time = self._clock()
            if state.state is CircuitStatus.HALF_OPEN:
                state.state = CircuitStatus.OPEN
                state.success_count = 0
                logger.warning(f"Circuit '{self.name}' reopened after half-open failure")
            elif (
                state.state is CircuitStatus.CLOSED
                and state.failure_count >= self.config.failure_threshold
            ):
                state.state = CircuitStatus.OPEN
                logger.warning(
                    f"Circuit '{self.name}' opened after {state.failure_count} failures"
                )

    async def call(self, operation: Callable[[], Awaitable[R]]) -> R:
        """
        Run the operation through the circuit.

        Raises CircuitOpenError without invoking the operation while open.
        """
        self._admit()
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState()
