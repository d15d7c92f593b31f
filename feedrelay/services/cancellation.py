"""Cooperative cancellation for feed acquisition.

A ``CancellationToken`` is shared by every fetch in a load run.
``run_with_deadline`` races one fetch against its own deadline and the token,
so either can stop that fetch without touching its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from feedrelay.middleware.error_handler import FeedTimeoutError, LoadCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str = "Request was cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise LoadCancelledError(self.reason)


async def _cancel_and_wait(task: asyncio.Future) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as exc:  # noqa: BLE001
        logger.debug("Task finished with an error while being cancelled: %s", exc)


async def run_with_deadline(
    awaitable: Awaitable[T],
    *,
    timeout: float | None,
    token: CancellationToken | None = None,
) -> T:
    """Await ``awaitable`` unless the deadline passes or the token fires first.

    Raises:
        FeedTimeoutError: the deadline passed first.
        LoadCancelledError: the token fired first.
    """
    if token is not None and token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise LoadCancelledError(token.reason)

    task = asyncio.ensure_future(awaitable)
    waiters: set[asyncio.Future] = {task}
    cancel_waiter: asyncio.Future | None = None
    if token is not None:
        cancel_waiter = asyncio.ensure_future(token.wait())
        waiters.add(cancel_waiter)

    try:
        done, _pending = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        await _cancel_and_wait(task)
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    await _cancel_and_wait(task)
    if token is not None and token.cancelled:
        raise LoadCancelledError(token.reason)
    raise FeedTimeoutError(f"Timed out after {timeout}s")


async def cancellable_sleep(delay: float, token: CancellationToken | None = None) -> None:
    """Sleep for ``delay`` seconds; raise ``LoadCancelledError`` early if the token fires."""
    if token is None:
        await asyncio.sleep(delay)
        return
    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise LoadCancelledError(token.reason)
