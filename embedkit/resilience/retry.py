"""Retry handler with exponential backoff and jitter for provider calls."""

import asyncio
import errno
import random
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

import httpx
import structlog

from ..common.errors import (
    AuthOrValidationError,
    CancelledError,
    CircuitOpenError,
    ConfigurationError,
    TransientNetworkError,
)
from .timeout import CancellationToken, sleep_ms

logger = structlog.get_logger("retry_handler")

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUSES: Tuple[int, ...] = (408, 429, 500, 502, 503, 504)

RETRYABLE_ERRNOS = frozenset({
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.EPIPE,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
})

RETRYABLE_MESSAGE_PATTERNS = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "temporarily unavailable",
)

RetryCallback = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Delays are in milliseconds. The delay before attempt ``n`` (n >= 2) is
    ``backoff_ms * backoff_multiplier ** (n - 2)`` with 10% jitter.
    """

    max_attempts: int = 3
    backoff_ms: float = 1000
    backoff_multiplier: float = 2.0
    retryable_statuses: Tuple[int, ...] = DEFAULT_RETRYABLE_STATUSES

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.backoff_ms < 0:
            raise ConfigurationError("backoff_ms must not be negative")


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_retryable_error(
    error: BaseException,
    retryable_statuses: Tuple[int, ...] = DEFAULT_RETRYABLE_STATUSES
) -> bool:
    """Decide whether a failed attempt is worth repeating."""
    if isinstance(error, (CancelledError, CircuitOpenError, AuthOrValidationError, asyncio.CancelledError)):
        return False

    status = _status_of(error)
    if status is not None:
        return status in retryable_statuses

    if isinstance(error, TransientNetworkError):
        return True

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError, socket.gaierror)):
        return True

    if isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS:
        return True

    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


class RetryExecutor:
    """Handles retry logic with exponential backoff."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        on_retry: Optional[RetryCallback] = None,
        sleep: Callable[[float, Optional[CancellationToken]], Awaitable[None]] = sleep_ms,
    ):
        self.config = config or RetryConfig()
        self.on_retry = on_retry
        self._sleep = sleep

    def calculate_delay_ms(self, failed_attempt: int) -> float:
        """Delay to wait after ``failed_attempt`` (1-based) before the next try."""
        delay = self.config.backoff_ms * (self.config.backoff_multiplier ** (failed_attempt - 1))
        return delay * random.uniform(0.9, 1.1)

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[T, int]:
        """Run ``fn`` until it succeeds or retries are exhausted.

        Returns ``(result, attempts_used)``. The last error is re-raised as is.
        """
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                result = await fn()
            except Exception as e:
                retryable = is_retryable_error(e, self.config.retryable_statuses)
                if attempt == max_attempts or not retryable:
                    if attempt > 1 or retryable:
                        logger.error(
                            "Operation failed after all retries",
                            operation=operation_name,
                            attempts=attempt,
                            error=str(e)
                        )
                    raise

                delay_ms = self.calculate_delay_ms(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt,
                    total_attempts=max_attempts,
                    delay_ms=round(delay_ms, 1),
                    error=str(e)
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, e, delay_ms)

                await self._sleep(delay_ms, cancel_token)
                continue

            if attempt > 1:
                logger.info(
                    "Operation succeeded after retry",
                    operation=operation_name,
                    attempt=attempt,
                    total_attempts=max_attempts
                )
            return result, attempt

        raise ConfigurationError("max_attempts must be at least 1")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[RetryCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    operation_name: str = "operation",
) -> Tuple[Any, int]:
    """Simple retry function with exponential backoff."""
    executor = RetryExecutor(config, on_retry=on_retry)
    return await executor.execute(fn, operation_name=operation_name, cancel_token=cancel_token)
