"""Cooperative cancellation handle for in-flight LLM calls.

A CancellationToken is created by the caller and carried on the request.
Awaitables passed through `guard()` are raced against the token: when the
token fires first, the underlying task is cancelled (which aborts the httpx
request inside the SDK client) and Cancelled is raised.
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, TypeVar

from .errors import Cancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Signalled once, observed by any number of awaiters."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self, provider: str = "") -> None:
        if self._cancelled:
            raise Cancelled(provider=provider)

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def wait(self) -> None:
        await self._get_event().wait()

    async def guard(self, awaitable: Awaitable[T], provider: str = "") -> T:
        """Await `awaitable`, aborting it if the token fires first.

        An already-signalled token raises without starting it; a bare
        coroutine is closed so it is never left unawaited.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise Cancelled(provider=provider)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise Cancelled(provider=provider)
