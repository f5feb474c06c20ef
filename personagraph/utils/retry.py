"""
Async retry helper for remote-service calls.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..errors import TransientServiceError
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (TransientServiceError, asyncio.TimeoutError)


async def retry_async(fn: Callable[[], Awaitable[T]],
                      attempts: int = 3,
                      delay: float = 1.0,
                      timeout: Optional[float] = None,
                      label: str = 'operation',
                      retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS) -> T:
    """
    Await fn() until it succeeds or attempts run out.

    The wait before attempt n + 1 is delay * n. Each attempt is bounded by timeout when
    one is given. Errors outside retry_on are raised immediately.

    Args:
        fn: Zero-argument coroutine factory
        attempts: Maximum number of attempts
        delay: Base delay in seconds
        timeout: Per-attempt deadline in seconds
        label: Name used in log messages
        retry_on: Exception types considered transient

    Returns:
        The result of the first successful attempt

    Raises:
        The last error once every attempt has failed
    """
    attempts = max(1, attempts)
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            if timeout:
                return await asyncio.wait_for(fn(), timeout=timeout)
            return await fn()
        except retry_on as e:
            last_error = e
            logger.warning(f'{label}: retry {attempt}/{attempts} failed: {e!r}')
            if attempt < attempts:
                await asyncio.sleep(delay * attempt)

    raise last_error


async def run_in_thread(fn: Callable[..., T], *args, timeout: Optional[float] = None) -> T:
    """
    Run a blocking client call in a worker thread, bounded by timeout.

    A worker thread cannot be interrupted. On timeout or cancellation this waits for
    the call to return before raising, so a caller holding a semaphore slot keeps it
    until the call has actually finished.

    Raises:
        asyncio.TimeoutError: The call outlived timeout (raised once it has returned)
    """
    future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
    try:
        if timeout:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        return await asyncio.shield(future)
    finally:
        if not future.done():
            logger.debug(f'Waiting for abandoned call {getattr(fn, "__name__", fn)} to return')
            await asyncio.wait({future})
            if not future.cancelled():
                future.exception()
