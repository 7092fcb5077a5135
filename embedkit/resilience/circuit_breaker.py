"""Circuit breaker for calls to embedding providers."""

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from ..common.errors import CancelledError, CircuitOpenError, ConfigurationError

logger = structlog.get_logger("circuit_breaker")

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, reject calls
    HALF_OPEN = "half-open"  # Next call is a trial request


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_ms: float = 30000

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be at least 1")
        if self.reset_timeout_ms < 0:
            raise ConfigurationError("reset_timeout_ms must not be negative")


@dataclass
class CircuitBreakerState:
    """Point-in-time view of a breaker. Times come from the breaker's clock."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    next_attempt_time: Optional[float] = None


class CircuitBreaker:
    """Circuit breaker for external service calls.

    A breaker can be shared by many concurrent pipeline calls. State changes
    are short critical sections under a ``threading.Lock`` so instances are
    also safe to share across threads.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        name: str = "circuit_breaker",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Configure a circuit breaker.

        Parameters
        - config: Failure threshold and reset timeout (milliseconds)
        - name: Identifier for logs/metrics
        - clock: Seconds source; injectable for tests
        """
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock
        self._state = CircuitBreakerState()
        self._lock = threading.Lock()

    @property
    def failure_threshold(self) -> int:
        return self.config.failure_threshold

    def _update_state(self) -> None:
        state = self._state
        if (
            state.state is CircuitState.OPEN
            and state.next_attempt_time is not None
            and self._clock() >= state.next_attempt_time
        ):
            state.state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker transitioning to HALF_OPEN", name=self.name)

    def is_open(self) -> bool:
        """Check whether calls are currently rejected."""
        with self._lock:
            self._update_state()
            return self._state.state is CircuitState.OPEN

    def get_state(self) -> CircuitState:
        with self._lock:
            self._update_state()
            return self._state.state

    def record_success(self) -> None:
        with self._lock:
            if self._state.state is not CircuitState.CLOSED:
                logger.info("Circuit breaker reset to CLOSED", name=self.name)
            self._state = CircuitBreakerState()

    def record_failure(self) -> None:
        with self._lock:
            self._update_state()
            now = self._clock()
            state = self._state
            state.failure_count += 1
            state.last_failure_time = now

            if state.state is CircuitState.HALF_OPEN or state.failure_count >= self.failure_threshold:
                was_open = state.state is CircuitState.OPEN
                state.state = CircuitState.OPEN
                state.next_attempt_time = now + self.config.reset_timeout_ms / 1000
                if not was_open:
                    logger.warning(
                        "Circuit breaker opened due to failures",
                        name=self.name,
                        failure_count=state.failure_count,
                        threshold=self.failure_threshold
                    )

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute ``fn`` with circuit breaker protection."""
        if self.is_open():
            next_attempt = self._state.next_attempt_time
            remaining_ms = max(0.0, (next_attempt - self._clock()) * 1000) if next_attempt else None
            logger.warning("Circuit breaker is OPEN, rejecting call", name=self.name)
            raise CircuitOpenError(
                f"Circuit breaker {self.name} is open; next attempt in "
                f"{'unknown' if remaining_ms is None else f'{remaining_ms:.0f}ms'}"
            )

        try:
            result = await fn()
        except CancelledError:
            raise
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState()
            logger.info("Circuit breaker forced to CLOSED", name=self.name)

    def force_open(self) -> None:
        with self._lock:
            now = self._clock()
            self._state.state = CircuitState.OPEN
            self._state.last_failure_time = now
            self._state.next_attempt_time = now + self.config.reset_timeout_ms / 1000
            logger.warning("Circuit breaker forced to OPEN", name=self.name)

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            self._update_state()
            return replace(self._state)

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        state = self.snapshot()
        return {
            "name": self.name,
            "state": state.state.value,
            "failure_count": state.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": state.last_failure_time,
            "next_attempt_time": state.next_attempt_time,
            "reset_timeout_ms": self.config.reset_timeout_ms,
        }
