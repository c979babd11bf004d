"""Retry helpers for transient failures in history persistence and collaborators."""

import asyncio
import time
import random
from typing import Callable, Any, Optional, List, Type
from functools import wraps

from .exceptions import WorkflowEngineError, TransientError, StorageError
from .logging import get_logger, ErrorRecoveryLogger


logger = get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [TransientError, StorageError]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if an exception should be retried."""
        if attempt >= self.max_attempts:
            return False

        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable

        return any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator adding retry logic to a synchronous function."""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return _execute_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


def _execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Execute function with retry logic."""
    recovery_logger = ErrorRecoveryLogger(func.__name__)

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                recovery_logger.log_recovery_success(func.__name__, attempt)
            return result
        except Exception as e:
            if not config.should_retry(e, attempt):
                recovery_logger.log_recovery_failure(func.__name__, e, attempt)
                raise

            recovery_logger.log_recovery_attempt(func.__name__, e, attempt, config.max_attempts)
            time.sleep(config.get_delay(attempt))


def with_async_retry(config: Optional[RetryConfig] = None):
    """Decorator adding retry logic to a coroutine function."""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await _execute_async_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


async def _execute_async_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Execute async function with retry logic."""
    recovery_logger = ErrorRecoveryLogger(func.__name__)

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
            if attempt > 1:
                recovery_logger.log_recovery_success(func.__name__, attempt)
            return result
        except Exception as e:
            if not config.should_retry(e, attempt):
                recovery_logger.log_recovery_failure(func.__name__, e, attempt)
                raise

            recovery_logger.log_recovery_attempt(func.__name__, e, attempt, config.max_attempts)
            await asyncio.sleep(config.get_delay(attempt))
