"""Tests for cancellation tokens."""

import asyncio

import pytest

from harness.cancellation import CancellationToken
from harness.errors import RunCancelledError


def test_new_token_is_active() -> None:
    """A new token is not cancelled and has no reason."""
    token = CancellationToken()

    assert not token.cancelled
    assert token.reason is None
    token.raise_if_cancelled()


def test_cancel_is_idempotent() -> None:
    """Keeps the first reason when cancelled twice."""
    token = CancellationToken()

    token.cancel("SIGINT")
    token.cancel("SIGTERM")

    assert token.cancelled
    assert token.reason == "SIGINT"


def test_cancel_reaches_children() -> None:
    """Cancelling a parent cancels its children, not the other way round."""
    parent = CancellationToken()
    child = parent.child()
    sibling = parent.child()

    sibling.cancel("attempt timed out")
    assert not parent.cancelled
    assert not child.cancelled

    parent.cancel("run aborted")
    assert child.cancelled
    assert child.reason == "run aborted"


def test_child_of_cancelled_token_starts_cancelled() -> None:
    """A child created after cancellation is already cancelled."""
    parent = CancellationToken()
    parent.cancel("done")

    assert parent.child().reason == "done"


def test_raise_if_cancelled() -> None:
    """Raises RunCancelledError carrying the reason."""
    token = CancellationToken()
    token.cancel("stop")

    with pytest.raises(RunCancelledError) as exc_info:
        token.raise_if_cancelled()

    assert exc_info.value.reason == "stop"


async def test_sleep_completes_when_not_cancelled() -> None:
    """Returns normally after the delay."""
    await CancellationToken().sleep(0.01)


async def test_sleep_wakes_on_cancel() -> None:
    """Raises as soon as the token is cancelled."""
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, token.cancel, "wake up")
    started = loop.time()

    with pytest.raises(RunCancelledError):
        await token.sleep(10)

    assert loop.time() - started < 1.0


async def test_until_cancelled_returns_result() -> None:
    """Returns the awaitable's result when it finishes first."""

    async def compute() -> int:
        return 42

    assert await CancellationToken().until_cancelled(compute()) == 42


async def test_until_cancelled_cancels_awaitable() -> None:
    """Cancels the awaitable and raises when the token fires first."""
    token = CancellationToken()
    lock = asyncio.Lock()
    await lock.acquire()
    asyncio.get_running_loop().call_later(0.01, token.cancel, "gave up")

    with pytest.raises(RunCancelledError):
        await token.until_cancelled(lock.acquire())

    lock.release()
    assert not lock.locked()


async def test_wait_returns_after_cancel() -> None:
    """Wakes every waiter on cancel."""
    token = CancellationToken()
    waiters = [asyncio.create_task(token.wait()) for _ in range(3)]

    token.cancel()
    await asyncio.wait_for(asyncio.gather(*waiters), timeout=1)

    assert all(waiter.done() for waiter in waiters)
