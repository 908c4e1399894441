"""
Base Gateway Primitives for External Providers.

Provides:
- Gateway exception hierarchy (transient vs. permanent provider failures)
- RetryConfig: attempt budget with exponential backoff between a floor and a cap
- execute_with_retry / with_retry for retrying only transient failures
"""

import asyncio
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from src.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error


class ProviderUnavailableError(GatewayError):
    """Raised when a provider is not reachable or returns a server error."""

    pass


class ProviderTimeoutError(GatewayError):
    """Raised when a provider request times out."""

    pass


class ProviderRateLimitError(GatewayError):
    """Raised when a provider rate limit is exceeded."""

    pass


class ProviderAuthenticationError(GatewayError):
    """Raised when provider authentication fails."""

    pass


# Failures worth another attempt. Authentication and malformed-request
# errors are permanent and surface immediately.
TRANSIENT_ERRORS: tuple[type[GatewayError], ...] = (
    ProviderUnavailableError,
    ProviderTimeoutError,
    ProviderRateLimitError,
)


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry budget for one class of provider call.

    max_retries counts retries after the first attempt, so a budget of 2
    makes at most 3 calls.
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Backoff in seconds before retry number ``retry_number`` (0-based)."""
        delay_ms = min(self.initial_delay_ms * (2**retry_number), self.max_delay_ms)
        return delay_ms / 1000.0


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    retry_config: RetryConfig,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
    description: str = "provider call",
) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget is spent.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the first occurrence. The last transient error is
    re-raised once attempts are exhausted.
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(retry_config.max_attempts):
        try:
            return await operation()
        except retry_on as e:
            last_exception = e
            if attempt < retry_config.max_retries:
                delay = retry_config.delay_for(attempt)
                logger.warning(
                    f"{description}: attempt {attempt + 1}/{retry_config.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"{description}: all {retry_config.max_attempts} attempts failed. "
                    f"Last error: {e}"
                )

    assert last_exception is not None
    raise last_exception


def with_retry(
    retry_config: RetryConfig,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
):
    """Decorator form of execute_with_retry."""

    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await execute_with_retry(
                lambda: func(*args, **kwargs),
                retry_config,
                retry_on=retry_on,
                description=func.__qualname__,
            )

        return wrapper

    return decorator
