"""Best-effort delivery of progress notifications to outside observers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from .models import SyncProgress, SyncStatus

LOGGER = logging.getLogger(__name__)

ProgressObserver = Callable[[SyncProgress], Awaitable[None] | None]


class ProgressEmitter:
    """Fire-and-forget fan-out of progress events.

    Observers may be plain callables or coroutine functions. Failures are
    logged and never reach the sync run that emitted the event.
    """

    def __init__(self, observer: ProgressObserver | None = None) -> None:
        self._observers: list[ProgressObserver] = [observer] if observer else []
        self._pending: set[asyncio.Future[None]] = set()

    def subscribe(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def emit(
        self, account_id: int, current: int, total: int, status: SyncStatus
    ) -> None:
        """Notify every observer without waiting for any of them."""
        if not self._observers:
            return
        progress = SyncProgress(
            account_id=account_id, current=current, total=total, status=status
        )
        for observer in self._observers:
            try:
                result = observer(progress)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Failed to emit sync progress event: %s", exc)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_done)

    async def drain(self) -> None:
        """Wait for in-flight observer coroutines; used by tests and shutdown."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _on_done(self, task: asyncio.Future[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Sync progress observer failed: %s", exc)


__all__ = ["ProgressEmitter", "ProgressObserver"]
