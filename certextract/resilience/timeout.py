"""Time ceilings for external calls."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import ProviderTimeoutError

R = TypeVar("R")


async def with_timeout(
    operation: Callable[[], Awaitable[R]],
    seconds: float,
    provider: Optional[str] = None,
) -> R:
    """
    Run an operation with a time ceiling.

    On expiry the in-flight operation is cancelled and ProviderTimeoutError
    is raised; nothing it produced afterwards is observed.
    """
    try:
        return await asyncio.wait_for(operation(), timeout=seconds)
    except asyncio.TimeoutError as e:
        raise ProviderTimeoutError(seconds, provider) from e
