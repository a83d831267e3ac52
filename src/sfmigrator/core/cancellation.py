"""
Cooperative cancellation.

A CancellationToken is a one-shot flag. Long-running operations check it at
every step boundary and poll tick, and race their suspension points against
``wait()`` so a signal is observed without waiting for the current call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sfmigrator.exceptions import CancelledError
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.cancellation")

T = TypeVar("T")


class CancellationToken:
    """
    One-shot cooperative cancellation flag.

    Do not share a token between unrelated operations: once signaled it stays signaled.

    Example:
        >>> token = CancellationToken()
        >>> token.on_cancel(lambda: print("stopping"))
        >>> token.cancel()
        stopping
        >>> token.is_cancelled
        True
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Idempotent; callbacks run once, in registration order."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback fired on cancellation.

        Runs immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback.
        """
        if self._cancelled:
            callback()
            return lambda: None

        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def raise_if_cancelled(self, message: str = "Operation cancelled by user") -> None:
        if self._cancelled:
            raise CancelledError(message)


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    When the token wins, the in-flight work is cancelled, its outcome is
    discarded and CancelledError is raised.
    """
    if token is None:
        return await awaitable
    if token.is_cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancelledError()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if token.is_cancelled:
        # Cancellation wins even when the work finished in the same tick
        work.add_done_callback(_discard_outcome)
        work.cancel()
        raise CancelledError()

    return work.result()


def _discard_outcome(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
