"""
Failure handling for the dashboard's external sources.

Two tools:
- retry_async: re-run a coroutine on transient message-source failures,
  with exponential backoff
- graceful_degradation: turn a failing source call into a fallback value so a
  reconciliation pass still produces a (smaller) guest list
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# 501 means the endpoint will never work, so it is not retried
RETRYABLE_STATUS_CODES = {408, 429}


class ServiceUnavailableError(Exception):
    """A snapshot or message source could not be reached."""

    def __init__(self, service: str, message: str, partial_result: Any = None):
        self.service = service
        self.message = message
        self.partial_result = partial_result
        super().__init__(f"{service}: {message}")


class TransientServiceError(ServiceUnavailableError):
    """Source failure expected to clear on its own (timeouts, 5xx, 429)."""


@dataclass
class RetryConfig:
    """Backoff policy for one kind of source call."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (TransientServiceError,)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)


BIRD_API_RETRY = RetryConfig(max_retries=2, base_delay=1.0, max_delay=10.0)


def is_retryable_status(status_code: int) -> bool:
    """True for HTTP statuses worth retrying."""
    if status_code in RETRYABLE_STATUS_CODES:
        return True
    return 500 <= status_code < 600 and status_code != 501


def retry_async(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Retry an async callable on the config's retryable exceptions.

    Args:
        config: Backoff policy (defaults to RetryConfig())
        on_retry: Called as on_retry(retry_number, exception) before each wait

    The last exception is re-raised once retries are exhausted; anything not
    listed in retryable_exceptions propagates on the first attempt.
    """
    cfg = config or RetryConfig()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except cfg.retryable_exceptions as e:
                    if attempt >= cfg.max_retries:
                        logger.error(
                            f"{func.__name__} failed after {cfg.max_retries} retries: {e}"
                        )
                        raise
                    delay = cfg.delay_for(attempt)
                    attempt += 1
                    logger.warning(
                        f"{func.__name__} failed ({e}); retry {attempt}/{cfg.max_retries} in {delay:.1f}s"
                    )
                    if on_retry:
                        on_retry(attempt, e)
                    await asyncio.sleep(delay)

        return wrapper
    return decorator


def graceful_degradation(
    service_name: str,
    fallback_value: Any = None,
    log_level: int = logging.WARNING,
):
    """
    Return a fallback instead of raising when a source call fails.

    Works for both sync and async callables. A callable fallback_value
    (e.g. ``list``) is invoked per failure so callers never share a mutable
    fallback.
    """
    def degrade(func_name: str, error: Exception):
        logger.log(log_level, f"{service_name} unavailable in {func_name}: {error}; using fallback")
        return fallback_value() if callable(fallback_value) else fallback_value

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs) -> T:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    return degrade(func.__name__, e)
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                return degrade(func.__name__, e)
        return sync_wrapper

    return decorator
