"""Cancellation tokens and per-attempt timeouts."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import structlog

from ..common.errors import CancelledError, TimeoutExceededError

logger = structlog.get_logger("timeout_guard")

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 30000


class CancellationToken:
    """Explicit cancellation context passed down through a pipeline call.

    Cancelling a token cancels every child created from it. Children never
    cancel their parent.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children: List["CancellationToken"] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self.reason: Optional[str] = None

        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason or "cancelled")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for child in self._children:
            child.cancel(reason)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(f"Operation cancelled: {self.reason}")

    async def wait(self) -> None:
        await self._event.wait()

    def child(self, timeout_ms: Optional[float] = None) -> "CancellationToken":
        """Create a linked token, optionally cancelled after ``timeout_ms``.

        The timer requires a running event loop.
        """
        token = CancellationToken(parent=self)
        if timeout_ms is not None and not token.cancelled:
            loop = asyncio.get_running_loop()
            token._timer = loop.call_later(timeout_ms / 1000, token.cancel, "timeout")
        return token


async def sleep_ms(delay_ms: float, cancel_token: Optional[CancellationToken] = None) -> None:
    """Sleep for ``delay_ms``, waking early if the token is cancelled."""
    if cancel_token is None:
        await asyncio.sleep(delay_ms / 1000)
        return

    cancel_token.raise_if_cancelled()
    try:
        await asyncio.wait_for(cancel_token.wait(), timeout=delay_ms / 1000)
    except asyncio.TimeoutError:
        return
    cancel_token.raise_if_cancelled()


def _consume_result(task: "asyncio.Future[Any]") -> None:
    # Abandoned attempts may still finish with an error; retrieve it so the
    # loop does not report it as never retrieved.
    if not task.cancelled():
        task.exception()


class TimeoutGuard:
    """Run one attempt under a time budget.

    The guarded callable receives a ``CancellationToken`` that is cancelled
    when the budget runs out. On expiry the in-flight task is cancelled and
    abandoned, and ``TimeoutExceededError`` is raised immediately.
    """

    def __init__(self, timeout_ms: float = DEFAULT_TIMEOUT_MS):
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self.timeout_ms = timeout_ms

    async def run(
        self,
        fn: Callable[[CancellationToken], Awaitable[T]],
        parent: Optional[CancellationToken] = None,
    ) -> T:
        if parent is not None:
            parent.raise_if_cancelled()

        token = CancellationToken(parent=parent)
        task = asyncio.ensure_future(fn(token))
        waiters = {task}
        parent_waiter = None
        if parent is not None:
            parent_waiter = asyncio.ensure_future(parent.wait())
            waiters.add(parent_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if parent_waiter is not None:
                parent_waiter.cancel()

        if task in done:
            return task.result()

        task.add_done_callback(_consume_result)
        task.cancel()

        if parent is not None and parent.cancelled:
            raise CancelledError(f"Operation cancelled: {parent.reason}")

        token.cancel("timeout")
        logger.warning("Attempt timed out", timeout_ms=self.timeout_ms)
        raise TimeoutExceededError(f"Operation timed out after {self.timeout_ms}ms")
