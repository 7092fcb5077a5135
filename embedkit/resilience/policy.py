"""Composition of the resilience primitives around a single provider call."""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

import structlog

from ..common.errors import CircuitOpenError, ConfigurationError
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .rate_limiter import RateLimitConfig, RateLimiter
from .retry import RetryCallback, RetryConfig, RetryExecutor
from .semaphore import Semaphore
from .timeout import DEFAULT_TIMEOUT_MS, CancellationToken, TimeoutGuard

logger = structlog.get_logger("resilience")

T = TypeVar("T")


@dataclass
class ResilienceState:
    """Resilience objects shared across calls.

    Pass one instance to many pipeline calls to coordinate them through the
    same breaker, limiter and semaphore. Missing members are built per call.
    """

    circuit_breaker: Optional[CircuitBreaker] = None
    rate_limiter: Optional[RateLimiter] = None
    semaphore: Optional[Semaphore] = None


@dataclass(frozen=True)
class ResilienceConfig:
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    rate_limit: Optional[RateLimitConfig] = None
    timeout_ms: float = DEFAULT_TIMEOUT_MS
    concurrency: int = 1
    state: Optional[ResilienceState] = field(default=None, compare=False)

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ConfigurationError("timeout_ms must be positive")
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")

    def build_state(self, name: str = "embedding") -> ResilienceState:
        """Merge the shared state with call-scoped instances for the gaps."""
        shared = self.state or ResilienceState()
        return ResilienceState(
            circuit_breaker=shared.circuit_breaker or CircuitBreaker(self.circuit_breaker, name=name),
            rate_limiter=shared.rate_limiter or (
                RateLimiter(self.rate_limit) if self.rate_limit is not None else None
            ),
            semaphore=shared.semaphore or Semaphore(self.concurrency),
        )


async def with_resilience(
    fn: Callable[[CancellationToken], Awaitable[T]],
    config: Optional[ResilienceConfig] = None,
    state: Optional[ResilienceState] = None,
    on_retry: Optional[RetryCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    operation_name: str = "operation",
) -> Tuple[T, int]:
    """Run ``fn`` behind breaker, rate limiter, semaphore, timeout and retry.

    Order: breaker check, rate-limit token, semaphore permit, then retried
    attempts each under the timeout guard. The breaker records one outcome
    per call, after retries settle. Returns ``(result, attempts_used)``.
    """
    config = config or ResilienceConfig()
    state = state or config.state or ResilienceState()
    breaker = state.circuit_breaker

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    if breaker is not None and breaker.is_open():
        raise CircuitOpenError(f"Circuit breaker {breaker.name} is open")

    if state.rate_limiter is not None:
        await state.rate_limiter.acquire(cancel_token=cancel_token)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    guard = TimeoutGuard(config.timeout_ms)
    executor = RetryExecutor(config.retry, on_retry=on_retry)

    async def attempt() -> T:
        return await guard.run(fn, parent=cancel_token)

    async def retried() -> Tuple[T, int]:
        return await executor.execute(attempt, operation_name=operation_name, cancel_token=cancel_token)

    async def gated() -> Tuple[T, int]:
        if breaker is None:
            return await retried()
        return await breaker.execute(retried)

    if state.semaphore is not None:
        return await state.semaphore.execute(gated)
    return await gated()
