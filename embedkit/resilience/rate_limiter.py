"""Token bucket rate limiter for outbound provider requests."""

import asyncio
import math
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

import structlog

from ..common.errors import ConfigurationError
from .timeout import CancellationToken, sleep_ms

logger = structlog.get_logger("rate_limiter")


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limit settings.

    ``burst_seconds`` sizes the bucket: it holds that many seconds' worth of
    tokens (minimum 1). ``tokens_per_minute`` is carried for providers that
    publish LLM token quotas; the limiter itself counts requests.
    """

    requests_per_minute: float = 60
    tokens_per_minute: Optional[int] = None
    burst_seconds: float = 10.0

    def __post_init__(self):
        if self.requests_per_minute <= 0:
            raise ConfigurationError("requests_per_minute must be positive")
        if self.burst_seconds <= 0:
            raise ConfigurationError("burst_seconds must be positive")


@dataclass
class RateLimiterState:
    tokens: float
    last_refill_time: float


class RateLimiter:
    """Token bucket refilled lazily from elapsed clock time."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep

        self.refill_rate = self.config.requests_per_minute / 60
        self.max_tokens = max(1, math.ceil(self.refill_rate * self.config.burst_seconds))
        self._state = RateLimiterState(tokens=float(self.max_tokens), last_refill_time=clock())
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._state.last_refill_time)
        self._state.tokens = min(self.max_tokens, self._state.tokens + elapsed * self.refill_rate)
        self._state.last_refill_time = now

    def can_proceed(self) -> bool:
        """Check whether one request may go out without consuming a token."""
        self._refill()
        return self._state.tokens >= 1

    def try_acquire(self, tokens: int = 1) -> bool:
        self._refill()
        if self._state.tokens >= tokens:
            self._state.tokens -= tokens
            return True
        return False

    async def _wait(self, delay_ms: float, cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is None:
            await self._sleep(delay_ms / 1000)
        else:
            await sleep_ms(delay_ms, cancel_token)

    async def acquire(self, tokens: int = 1, cancel_token: Optional[CancellationToken] = None) -> float:
        """Wait until ``tokens`` are available, then take them.

        Returns the milliseconds spent waiting. Cancelling ``cancel_token``
        ends the wait with ``CancelledError`` and takes nothing.
        """
        if tokens > self.max_tokens:
            raise ConfigurationError(
                f"Cannot acquire {tokens} tokens from a bucket of {self.max_tokens}"
            )

        async with self._lock:
            if self.try_acquire(tokens):
                return 0.0

            started = self._clock()
            self._refill()
            needed = tokens - self._state.tokens
            wait_ms = math.ceil(needed / self.refill_rate * 1000)
            logger.debug("Rate limited, waiting", wait_ms=wait_ms, tokens=tokens)
            if wait_ms > 0:
                await self._wait(wait_ms, cancel_token)

            # Clock drift can leave the bucket short after the computed wait
            while not self.try_acquire(tokens):
                await self._wait(math.ceil(1 / self.refill_rate * 1000), cancel_token)

            return (self._clock() - started) * 1000

    def get_wait_time_ms(self) -> float:
        """Milliseconds until the next token is available."""
        self._refill()
        if self._state.tokens >= 1:
            return 0
        return math.ceil((1 - self._state.tokens) / self.refill_rate * 1000)

    def snapshot(self) -> RateLimiterState:
        self._refill()
        return replace(self._state)
