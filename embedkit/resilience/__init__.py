"""Resilience primitives shared by HTTP providers and the embedding pipeline.

Modules
- ``retry``: exponential backoff with jitter and transient-error detection
- ``circuit_breaker``: closed/open/half-open state machine
- ``rate_limiter``: token bucket with lazy refill
- ``semaphore``: FIFO counting semaphore
- ``timeout``: cancellation tokens and per-attempt timeouts
- ``policy``: composition of all of the above around one call
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState, CircuitState
from .policy import ResilienceConfig, ResilienceState, with_resilience
from .rate_limiter import RateLimitConfig, RateLimiter, RateLimiterState
from .retry import RetryConfig, RetryExecutor, is_retryable_error, with_retry
from .semaphore import Semaphore
from .timeout import CancellationToken, TimeoutGuard, sleep_ms

__all__ = [
    "CancellationToken",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimiterState",
    "ResilienceConfig",
    "ResilienceState",
    "RetryConfig",
    "RetryExecutor",
    "Semaphore",
    "TimeoutGuard",
    "is_retryable_error",
    "sleep_ms",
    "with_resilience",
    "with_retry",
]
