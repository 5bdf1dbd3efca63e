"""Timeout, retry and circuit-breaker discipline for external calls."""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStatus,
)
from .errors import (
    CircuitOpenError,
    ExtractionError,
    ExtractionSettingsError,
    MalformedResponseError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    TransportError,
    UnconfiguredProviderError,
)
from .pool import ResiliencePool, get_resilience_pool
from .retry import NO_RETRY, BackoffPolicy, with_retry
from .timeout import with_timeout

__all__ = [
    "BackoffPolicy",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStatus",
    "ExtractionError",
    "ExtractionSettingsError",
    "MalformedResponseError",
    "NO_RETRY",
    "ProviderError",
    "ProviderTimeoutError",
    "RateLimitError",
    "ResiliencePool",
    "TransportError",
    "UnconfiguredProviderError",
    "get_resilience_pool",
    "with_retry",
    "with_timeout",
]
