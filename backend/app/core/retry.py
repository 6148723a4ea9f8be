"""
Centralized retry/backoff utilities.

Every blocking dependency in the pipeline (face matching calls, store
writes under throttling, change-feed records) is retried with bounded
exponential backoff through these helpers so that attempts, delays and
exhaustion are logged the same way everywhere.
"""

import asyncio
import logging
import random
import time
from functools import wraps
from typing import Callable, TypeVar, Sequence, Optional

from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.exceptions import FaceMatchingUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Sequence[type[Exception]] = (Exception,),
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts (including first)
            base_delay: Initial delay between retries in seconds
            max_delay: Maximum delay between retries
            exponential_base: Base for exponential backoff
            jitter: Whether to add random jitter to delays
            retryable_exceptions: Exception types that trigger retry
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = tuple(retryable_exceptions)


# Face matching collaborator: timeouts and 5xx only, never 4xx
RETRY_FACE_MATCHING = RetryConfig(
    max_attempts=settings.FACE_MATCHING_MAX_ATTEMPTS,
    base_delay=1.0,
    max_delay=20.0,
    retryable_exceptions=(FaceMatchingUnavailableError, ConnectionError, TimeoutError),
)

# Store throttling / lock contention (sqlite "database is locked", pg serialization)
RETRY_STORE_WRITE = RetryConfig(
    max_attempts=4,
    base_delay=0.5,
    max_delay=8.0,
    retryable_exceptions=(OperationalError,),
)

# A single change-feed record before it is dead-lettered
RETRY_FEED_RECORD = RetryConfig(
    max_attempts=settings.FEED_MAX_RECORD_ATTEMPTS,
    base_delay=0.5,
    max_delay=5.0,
    retryable_exceptions=(Exception,),
)


def calculate_delay(
    attempt: int,
    config: RetryConfig,
) -> float:
    """
    Calculate delay for a given attempt number.

    Args:
        attempt: Zero-based attempt number
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = min(
        config.base_delay * (config.exponential_base ** attempt),
        config.max_delay
    )

    if config.jitter:
        # ±25% so concurrent workers do not retry in lockstep
        jitter_range = delay * 0.25
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


def _log_attempt_failed(op_name: str, attempt: int, config: RetryConfig, delay: float, e: Exception) -> None:
    logger.warning(
        f"{op_name} failed (attempt {attempt + 1}/{config.max_attempts}), "
        f"retrying in {delay:.1f}s: {e}",
        extra={
            "event_type": "retry_attempt",
            "operation": op_name,
            "attempt": attempt + 1,
            "max_attempts": config.max_attempts,
            "delay_seconds": delay,
            "error": str(e),
            "error_type": type(e).__name__,
        }
    )


def _log_exhausted(op_name: str, config: RetryConfig, e: Exception) -> None:
    logger.error(
        f"{op_name} failed after {config.max_attempts} attempts: {e}",
        extra={
            "event_type": "retry_exhausted",
            "operation": op_name,
            "attempts": config.max_attempts,
            "final_error": str(e),
            "error_type": type(e).__name__,
        }
    )


async def retry_async(
    func: Callable[..., T],
    *args,
    config: RetryConfig = RETRY_FACE_MATCHING,
    operation_name: Optional[str] = None,
    **kwargs,
) -> T:
    """
    Execute an async function with retry logic.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        config: Retry configuration
        operation_name: Name for logging (defaults to func name)
        **kwargs: Keyword arguments for func

    Returns:
        Result of successful function call

    Raises:
        Last exception if all retries fail. Exceptions outside
        config.retryable_exceptions propagate on the first attempt.

    Example:
        faces = await retry_async(
            client.detect,
            image_ref,
            config=RETRY_FACE_MATCHING,
            operation_name="face_detect",
        )
    """
    op_name = operation_name or getattr(func, '__name__', 'operation')
    last_exception: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            last_exception = e

            if attempt < config.max_attempts - 1:
                delay = calculate_delay(attempt, config)
                _log_attempt_failed(op_name, attempt, config, delay, e)
                await asyncio.sleep(delay)
            else:
                _log_exhausted(op_name, config, e)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError(f"{op_name} failed with no exception captured")


def retry_sync(
    func: Callable[..., T],
    *args,
    config: RetryConfig = RETRY_STORE_WRITE,
    operation_name: Optional[str] = None,
    **kwargs,
) -> T:
    """
    Execute a synchronous function with retry logic.

    Args:
        func: Sync function to execute
        *args: Positional arguments for func
        config: Retry configuration
        operation_name: Name for logging (defaults to func name)
        **kwargs: Keyword arguments for func

    Returns:
        Result of successful function call

    Raises:
        Last exception if all retries fail
    """
    op_name = operation_name or getattr(func, '__name__', 'operation')
    last_exception: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        try:
            return func(*args, **kwargs)
        except config.retryable_exceptions as e:
            last_exception = e

            if attempt < config.max_attempts - 1:
                delay = calculate_delay(attempt, config)
                _log_attempt_failed(op_name, attempt, config, delay, e)
                time.sleep(delay)
            else:
                _log_exhausted(op_name, config, e)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError(f"{op_name} failed with no exception captured")


def with_retry(
    config: RetryConfig = RETRY_FACE_MATCHING,
    operation_name: Optional[str] = None,
):
    """
    Decorator to add retry behavior to async functions.

    Usage:
        @with_retry(config=RETRY_FACE_MATCHING)
        async def detect(self, image_ref: str) -> list[DetectedFace]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_async(
                func, *args,
                config=config,
                operation_name=op_name,
                **kwargs
            )
        return wrapper
    return decorator
