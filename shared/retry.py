"""Retry logic with exponential backoff for network operations."""

import asyncio
import inspect
import logging
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_exponential_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None
):
    """
    Decorator to retry a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds before first retry
        exponential_base: Base for exponential backoff calculation
        exceptions: Tuple of exception types to catch and retry
        should_retry: Optional predicate; exceptions it rejects are raised immediately

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        def _give_up(e: Exception, attempt: int) -> bool:
            if should_retry is not None and not should_retry(e):
                return True
            if attempt >= max_retries:
                logger.error(
                    f"All {max_retries + 1} attempts failed for {func.__name__}: {e}"
                )
                return True
            return False

        def _delay(e: Exception, attempt: int) -> float:
            delay = initial_delay * (exponential_base ** attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f} seconds..."
            )
            return delay

        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            """Async wrapper for retry logic."""
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if _give_up(e, attempt):
                        raise
                    await asyncio.sleep(_delay(e, attempt))

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            """Sync wrapper for retry logic."""
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if _give_up(e, attempt):
                        raise
                    time.sleep(_delay(e, attempt))

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
