"""Tests for cancellation tokens and per-attempt timeouts."""

import asyncio
import time

import pytest

from embedkit.common.errors import CancelledError, TimeoutExceededError, TransientNetworkError
from embedkit.resilience import CancellationToken, TimeoutGuard, is_retryable_error, sleep_ms


@pytest.mark.asyncio
async def test_cancel_propagates_to_children_only():
    parent = CancellationToken()
    child = parent.child()
    grandchild = child.child()

    child.cancel("stop")

    assert child.cancelled
    assert grandchild.cancelled
    assert grandchild.reason == "stop"
    assert not parent.cancelled


@pytest.mark.asyncio
async def test_child_of_cancelled_parent_starts_cancelled():
    parent = CancellationToken()
    parent.cancel("shutdown")

    child = parent.child()

    assert child.cancelled
    with pytest.raises(CancelledError):
        child.raise_if_cancelled()


@pytest.mark.asyncio
async def test_child_timeout():
    token = CancellationToken().child(timeout_ms=10)
    await asyncio.wait_for(token.wait(), timeout=1)
    assert token.reason == "timeout"


@pytest.mark.asyncio
async def test_sleep_wakes_on_cancel():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)
    started = time.monotonic()

    with pytest.raises(CancelledError):
        await sleep_ms(5000, token)

    assert time.monotonic() - started < 1


@pytest.mark.asyncio
async def test_guard_returns_result():
    guard = TimeoutGuard(1000)

    async def fast(token):
        return "done"

    assert await guard.run(fast) == "done"


@pytest.mark.asyncio
async def test_guard_times_out_and_cancels_token():
    """Test that an attempt exceeding its budget is abandoned."""
    guard = TimeoutGuard(20)
    seen = []

    async def slow(token):
        seen.append(token)
        await asyncio.sleep(10)

    started = time.monotonic()
    with pytest.raises(TimeoutExceededError):
        await guard.run(slow)

    assert time.monotonic() - started < 1
    assert seen[0].cancelled
    assert seen[0].reason == "timeout"


@pytest.mark.asyncio
async def test_guard_stops_when_parent_cancelled():
    guard = TimeoutGuard(5000)
    parent = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, parent.cancel, "user abort")

    async def slow(token):
        await asyncio.sleep(10)

    with pytest.raises(CancelledError):
        await guard.run(slow, parent=parent)


def test_timeout_is_transient():
    error = TimeoutExceededError("Operation timed out after 20ms")
    assert isinstance(error, TransientNetworkError)
    assert is_retryable_error(error)


def test_invalid_timeout():
    with pytest.raises(ValueError):
        TimeoutGuard(0)
