"""Counting semaphore bounding concurrent provider requests."""

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, TypeVar

from ..common.errors import ConfigurationError

T = TypeVar("T")


class Semaphore:
    """FIFO counting semaphore.

    Waiters are served in arrival order. A released permit is handed straight
    to the oldest waiter, so late arrivals cannot overtake it.
    """

    def __init__(self, permits: int = 1):
        if permits < 1:
            raise ConfigurationError("permits must be at least 1")
        self.permits = permits
        self._available = permits
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def available(self) -> int:
        return self._available

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self._available > 0 and not self._waiters:
            self._available -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Permit was handed over just before cancellation
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self._available >= self.permits:
            raise ValueError("Semaphore released too many times")
        self._available += 1

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` holding one permit; the permit is released on every exit path."""
        await self.acquire()
        try:
            return await fn()
        finally:
            self.release()
