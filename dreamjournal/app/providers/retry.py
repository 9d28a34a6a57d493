"""Exponential backoff for transient failures of the analysis provider.

Only failures that a second attempt can plausibly fix are retried: network
errors, timeouts, 429 and 5xx responses. Anything else propagates at once so
the analyzer can fall back to keyword analysis without delay.
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import httpx

from dreamjournal.app.core.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class RetryPolicy:
    """Retry behavior with exponential backoff.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds
        exponential_base: Growth factor between consecutive delays
        retryable_exceptions: Transport-level exceptions that trigger a retry
    """

    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 4.0
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        httpx.TransportError,
    )

    def calculate_delay(self, attempt: int) -> float:
        """min(base_delay * exponential_base ** attempt, max_delay)"""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)

    def is_retryable(self, exception: Exception) -> bool:
        if isinstance(exception, httpx.HTTPStatusError):
            status = exception.response.status_code
            return status == 429 or status >= 500
        return isinstance(exception, self.retryable_exceptions)


def with_retry(policy: Optional[RetryPolicy] = None) -> Callable[[F], F]:
    """Decorate an async callable so retryable failures are attempted again.

    Example:
        @with_retry(policy=RetryPolicy(max_retries=2))
        async def chat_completion(self, payload):
            ...
    """
    retry_policy = policy or RetryPolicy()

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not retry_policy.is_retryable(e):
                        raise
                    if attempt >= retry_policy.max_retries:
                        logger.warning(
                            f"Giving up on {func.__name__} after {attempt + 1} attempts: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = retry_policy.calculate_delay(attempt)
                    attempt += 1
                    logger.info(
                        f"Retry {attempt}/{retry_policy.max_retries} for {func.__name__} "
                        f"after {type(e).__name__}; waiting {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper  # type: ignore

    return decorator
