"""
Cancellation token for cooperative run cancellation.

One token is created per chat run. The transport boundary (HTTP disconnect,
WebSocket interrupt) cancels it; the orchestration engine and the cleanup
coordinator observe it.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import Awaitable, Callable
from typing import TypeVar

from core.exceptions import CancellationRequested
from utils.logger import logger

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token.

    - ``cancel()`` is synchronous: the flag is set and listeners run before it
      returns, so no await can interleave between the signal and its observers.
    - ``race()`` runs an awaitable against the token and abandons it on abort.

    Usage:
        token = CancellationToken()

        # In producer/controller:
        token.cancel("client disconnected")

        # In consumer/worker:
        token.check()  # Raises CancellationRequested if cancelled
        result = await token.race(call_tool(...))
    """

    __slots__ = ("_listeners", "_reason", "_fired")

    def __init__(self) -> None:
        self._fired = asyncio.Event()
        self._listeners: list[Callable[[], None]] = []
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        """True once ``cancel()`` has been called."""
        return self._fired.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Fire the token and run its listeners. Only the first call has any effect."""
        if self._fired.is_set():
            return

        self._reason = reason
        self._fired.set()

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            self._notify(listener)

    def _notify(self, callback: Callable[[], None]) -> None:
        """A failing listener is logged and does not stop the others."""
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation listener raised {type(e).__name__}: {e}")

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """Block until the token fires; ``False`` if ``timeout`` elapses first."""
        try:
            await asyncio.wait_for(self._fired.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` when the token fires, or right away if it already has.

        The callback is returned so it can later be passed to ``remove_callback``.
        """
        if self._fired.is_set():
            self._notify(callback)
        else:
            self._listeners.append(callback)
        return callback

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Unregister a listener; unknown callbacks are ignored."""
        with contextlib.suppress(ValueError):
            self._listeners.remove(callback)

    def check(self) -> None:
        """Raise if cancelled.

        Raises:
            CancellationRequested: If the token is cancelled
        """
        if self.is_cancelled:
            raise CancellationRequested(self._reason)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the pending operation is cancelled and its result is
        never awaited; ``CancellationRequested`` is raised immediately.

        Raises:
            CancellationRequested: If the token fires before the operation completes
        """
        self.check()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._fired.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        work.add_done_callback(_consume_result)
        raise CancellationRequested(self._reason)


def _consume_result(task: asyncio.Future[object]) -> None:
    """Retrieve an abandoned task's outcome so it is never reported as unhandled."""
    if not task.cancelled():
        task.exception()


__all__ = ["CancellationToken"]
