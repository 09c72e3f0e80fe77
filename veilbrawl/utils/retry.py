"""Bounded retry with linear backoff for transient failures."""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """All attempts failed with a retryable error."""

    def __init__(self, attempts: int, last_exception: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_exception}")
        self.attempts = attempts
        self.last_exception = last_exception


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 4,
    base_delay_ms: int = 200,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """
    Run an async operation, retrying retryable errors.

    The delay before attempt n+1 is base_delay_ms * n. Errors not listed in
    retry_on propagate immediately.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Maximum number of attempts (>= 1)
        base_delay_ms: Linear backoff step in milliseconds
        retry_on: Exception types treated as transient
        label: Name used in log messages

    Raises:
        RetryExhausted: If every attempt raised a retryable error
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= attempts:
                raise RetryExhausted(attempt, exc) from exc
            logger.warning("%s failed (attempt %s/%s): %s", label, attempt, attempts, exc)
            await asyncio.sleep(base_delay_ms * attempt / 1000.0)
    raise AssertionError("unreachable")
