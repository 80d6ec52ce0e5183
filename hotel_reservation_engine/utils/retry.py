"""
Backoff-and-retry helpers.

Lost room claims and stale booking versions are retried with
``retry_on_concurrency_error``; calls to the payment gateway with
``retry_on_external_service_error``.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Tuple, Type

from ..utils.exceptions import ConcurrencyError, ExternalServiceError

logger = logging.getLogger(__name__)

ExceptionTypes = Tuple[Type[BaseException], ...]


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Sleep before the attempt following zero-based ``attempt``."""
        delay = min(self.base_delay * self.exponential_base ** attempt, self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay


async def retry_async(
    func: Callable,
    config: RetryConfig,
    *args,
    retryable_exceptions: ExceptionTypes = (Exception,),
    non_retryable_exceptions: ExceptionTypes = (),
    **kwargs
) -> Any:
    """
    Await ``func(*args, **kwargs)`` up to ``config.max_attempts`` times.

    Errors in ``non_retryable_exceptions`` propagate on first sight, even
    when they also match ``retryable_exceptions``. When every attempt
    fails the last error is re-raised.
    """
    name = getattr(func, "__qualname__", None) or func.__name__

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except non_retryable_exceptions:
            raise
        except retryable_exceptions as e:
            if attempt == config.max_attempts:
                logger.error(f"{name} gave up after {attempt} attempts: {e}")
                raise

            delay = config.delay_for(attempt - 1)
            logger.warning(f"{name} attempt {attempt} failed ({e}), retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
        else:
            if attempt > 1:
                logger.info(f"{name} succeeded on attempt {attempt}")
            return result


def _retrying(config: RetryConfig, retryable: ExceptionTypes, non_retryable: ExceptionTypes):
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_async(
                func,
                config,
                *args,
                retryable_exceptions=retryable,
                non_retryable_exceptions=non_retryable,
                **kwargs
            )
        return wrapper
    return decorator


def retry_on_concurrency_error(
    max_attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    jitter: bool = True
):
    """Retry when another transaction won a version check."""
    return _retrying(
        RetryConfig(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay, jitter=jitter),
        retryable=(ConcurrencyError,),
        non_retryable=(ValueError, TypeError),
    )


def retry_on_external_service_error(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0
):
    """Retry transport-level failures talking to a third party."""
    return _retrying(
        RetryConfig(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay),
        retryable=(ExternalServiceError, asyncio.TimeoutError, ConnectionError),
        non_retryable=(ValueError, TypeError, KeyError),
    )
