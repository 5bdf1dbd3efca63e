"""
Retry with exponential backoff.

The backoff schedule is an explicit, stateless policy object so the delay for
any attempt can be computed (and tested) without running the retry loop.
The loop itself is tenacity's AsyncRetrying driven by that schedule.
"""

import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from .errors import CircuitOpenError, MalformedResponseError, UnconfiguredProviderError

logger = logging.getLogger(__name__)

R = TypeVar("R")

RetryCallback = Callable[[BaseException, int], None]


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff schedule."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.0  # fraction of the delay added at random

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def next_delay(self, attempt: int) -> float:
        """
        Delay to wait after the given (1-based) failed attempt.

        Grows geometrically from initial_delay and never exceeds max_delay,
        jitter included.
        """
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        delay = min(
            self.initial_delay * (self.backoff_multiplier ** (attempt - 1)),
            self.max_delay,
        )
        if self.jitter > 0:
            delay = min(delay + random.uniform(0, delay * self.jitter), self.max_delay)
        return delay


NO_RETRY = BackoffPolicy(max_attempts=1, initial_delay=0.0, max_delay=0.0)


def _is_retryable(error: BaseException) -> bool:
    # CancelledError is a BaseException and must never be retried.
    if not isinstance(error, Exception):
        return False
    return not isinstance(
        error, (CircuitOpenError, UnconfiguredProviderError, MalformedResponseError)
    )


async def with_retry(
    operation: Callable[[], Awaitable[R]],
    policy: BackoffPolicy,
    on_retry: Optional[RetryCallback] = None,
) -> R:
    """
    Execute an async operation, retrying failures per the backoff policy.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Attempt limit and delay schedule
        on_retry: Called with (error, attempt_number) before each backoff sleep

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted. Cancellation is not
        retried and interrupts a pending backoff sleep.
    """

    def _wait(retry_state: RetryCallState) -> float:
        return policy.next_delay(retry_state.attempt_number)

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{policy.max_attempts} failed: {error}; "
            f"retrying in {retry_state.next_action.sleep:.2f}s"
        )
        if on_retry is not None:
            on_retry(error, retry_state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_wait,
        retry=retry_if_exception(_is_retryable),
        before_sleep=_before_sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result
