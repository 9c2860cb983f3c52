"""Retry and timeout helpers for upstream calls."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from docingest.core.config import settings
from docingest.core.exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[[], T],
    max_retries: Optional[int] = None,
    delay: Optional[float] = None,
    backoff_multiplier: Optional[float] = None,
    exceptions: tuple = (Exception,),
    operation: str = "operation",
) -> T:
    """
    Call ``func`` until it succeeds, sleeping longer after each failure.

    Args:
        func: Zero-argument callable; coroutine results are awaited.
        max_retries: Extra attempts after the first one.
        delay: Sleep before the first retry, in seconds.
        backoff_multiplier: Factor applied to the sleep after every retry.
        exceptions: Exception types that trigger a retry.
        operation: Label for log messages.

    Returns:
        Whatever ``func`` returned.

    Raises:
        The error from the final attempt once retries are exhausted.
    """
    max_retries = settings.max_retries if max_retries is None else max_retries
    delay = settings.retry_delay_seconds if delay is None else delay
    if backoff_multiplier is None:
        backoff_multiplier = settings.retry_backoff_multiplier

    last_exception = None

    for attempt in range(max_retries + 1):
        try:
            result = func()
            if inspect.isawaitable(result):
                result = await result
            return result
        except exceptions as e:
            last_exception = e
            if attempt < max_retries:
                wait_time = delay * (backoff_multiplier ** attempt)
                logger.warning(
                    f"{operation}: attempt {attempt + 1}/{max_retries + 1} failed: {str(e)}. "
                    f"Retrying in {wait_time:.2f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(
                    f"{operation}: all {max_retries + 1} attempts failed. Last error: {str(e)}")

    raise last_exception


async def with_timeout(
    awaitable: Awaitable[T], timeout: Optional[float], operation: str
) -> T:
    """
    Await a call, converting expiry into an upstream failure.

    Args:
        awaitable: Coroutine to await.
        timeout: Timeout in seconds, or None for no limit.
        operation: Name of the operation for the error message.

    Returns:
        Result of the awaitable.

    Raises:
        OperationTimeoutError: If the timeout expires.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(
            f"{operation} timed out after {timeout:.1f}s") from e
