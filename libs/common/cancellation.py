"""Explicit cancellation tokens for long-running client calls.

A token is handed to an async call; the owner cancels it on teardown and the
callee discards its result instead of publishing it.
"""

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised when work is abandoned because its token was cancelled."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def bind(self, task: asyncio.Task) -> None:
        """Attach the task doing the work so cancel() can abort it mid-flight."""
        self._task = task

    def cancel(self) -> None:
        self._event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled()


async def run_cancellable(
    coro: Coroutine[Any, Any, T], token: Optional[CancellationToken] = None
) -> T:
    """Await ``coro``; if ``token`` is cancelled meanwhile raise OperationCancelled."""
    if token is None:
        return await coro
    if token.cancelled:
        coro.close()
        raise OperationCancelled()

    task = asyncio.ensure_future(coro)
    token.bind(task)
    try:
        result = await task
    except asyncio.CancelledError:
        if token.cancelled:
            raise OperationCancelled() from None
        raise
    token.raise_if_cancelled()
    return result
