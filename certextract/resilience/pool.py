"""
Registry of named circuits and the composed resilient call.

Every external provider call goes through ResiliencePool.call, which layers
circuit(retry(timeout(operation))). An exhausted retry therefore counts as a
single circuit failure, and an open circuit short-circuits before any retry.
"""

import logging
import threading
import time
from collections import OrderedDict
from functools import lru_cache
from typing import Awaitable, Callable, Optional, TypeVar

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStatus,
    Clock,
)
from .retry import BackoffPolicy, RetryCallback, with_retry
from .timeout import with_timeout

logger = logging.getLogger(__name__)

R = TypeVar("R")

MAX_CIRCUITS = 100


class ResiliencePool:
    """Lazily created named circuit breakers sharing one clock."""

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        default_policy: Optional[BackoffPolicy] = None,
        default_timeout: float = 30.0,
        clock: Clock = time.monotonic,
        max_circuits: int = MAX_CIRCUITS,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self.default_policy = default_policy or BackoffPolicy()
        self.default_timeout = default_timeout
        self._clock = clock
        self._max_circuits = max_circuits
        self._configs: dict[str, CircuitBreakerConfig] = {}
        self._breakers: "OrderedDict[str, CircuitBreaker]" = OrderedDict()
        # Guards the registry only; each breaker has its own lock for state.
        self._registry_lock = threading.Lock()

    def configure(self, name: str, config: CircuitBreakerConfig) -> None:
        """Set the config for a circuit; replaces an existing circuit's breaker."""
        with self._registry_lock:
            self._configs[name] = config
            if name in self._breakers:
                self._breakers[name] = CircuitBreaker(name, config, self._clock)

    def breaker(self, name: str) -> CircuitBreaker:
        with self._registry_lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                if len(self._breakers) >= self._max_circuits:
                    evicted, _ = self._breakers.popitem(last=False)
                    logger.warning(f"Circuit registry full, evicting '{evicted}'")
                breaker = CircuitBreaker(
                    name, self._configs.get(name, self.default_config), self._clock
                )
                self._breakers[name] = breaker
            return breaker

    def state(self, name: str) -> CircuitStatus:
        return self.breaker(name).state

    def stats(self) -> dict[str, CircuitState]:
        with self._registry_lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def reset(self, name: str) -> None:
        with self._registry_lock:
            breaker = self._breakers.get(name)
        if breaker is not None:
            breaker.reset()

    def reset_all(self) -> None:
        with self._registry_lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    async def call(
        self,
        name: str,
        operation: Callable[[], Awaitable[R]],
        timeout: Optional[float] = None,
        policy: Optional[BackoffPolicy] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> R:
        """Run operation as circuit(name, retry(timeout(operation)))."""
        seconds = timeout if timeout is not None else self.default_timeout
        backoff = policy or self.default_policy

        async def _attempt() -> R:
            return await with_timeout(operation, seconds, provider=name)

        async def _retried() -> R:
            return await with_retry(_attempt, backoff, on_retry=on_retry)

        return await self.breaker(name).call(_retried)


@lru_cache()
def get_resilience_pool() -> ResiliencePool:
    """Process-wide pool built from environment settings."""
    from ..config.settings import get_settings

    settings = get_settings()
    return ResiliencePool(
        default_config=CircuitBreakerConfig(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_timeout_seconds,
            half_open_requests=settings.circuit_half_open_requests,
        ),
        default_policy=BackoffPolicy(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
            jitter=0.1,
        ),
        default_timeout=settings.provider_timeout_seconds,
    )
