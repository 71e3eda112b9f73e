"""Cooperative cancellation shared between the scheduler and test bodies."""

import asyncio
import weakref
from collections.abc import Awaitable
from typing import TypeVar

from harness.errors import RunCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal.

    A token is cancelled at most once. Cancelling a token cancels every child
    created from it, so a run-level token reaches all in-flight attempts.
    Test bodies are expected to observe it at their own suspension points,
    either by awaiting ``sleep``/``until_cancelled`` or by polling
    ``raise_if_cancelled``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this token and all of its children. Idempotent."""
        if self.cancelled:
            return
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def child(self) -> "CancellationToken":
        """Create a token that is cancelled together with this one."""
        token = CancellationToken()
        if self.cancelled:
            token.cancel(self._reason or "cancelled")
        else:
            self._children.add(token)
        return token

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self._reason or "cancelled")

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early if cancelled.

        Raises:
            RunCancelledError: If the token is cancelled before the delay ends

        """
        self.raise_if_cancelled()
        try:
            async with asyncio.timeout(delay):
                await self._event.wait()
        except TimeoutError:
            return
        self.raise_if_cancelled()

    async def until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token is cancelled first.

        Raises:
            RunCancelledError: If the token is cancelled before completion

        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        raise RunCancelledError(self._reason or "cancelled")
