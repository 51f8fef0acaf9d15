"""Per-key debouncing of asynchronous operations."""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]


class SyncState(str, Enum):
    """Lifecycle of a note in the sync engine: idle -> debouncing -> syncing -> idle."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    SYNCING = "syncing"


class _Pending:
    def __init__(self, action: Action, future: asyncio.Future, handle: asyncio.Handle):
        self.action = action
        self.future = future
        self.handle = handle


class Debouncer:
    """Coalesces repeated triggers for the same key into one run of the last action.

    Scheduling a key that is already pending cancels the pending timer; the
    superseded caller's future resolves to None. Only the last action within
    the window runs.
    """

    def __init__(self, delay: float):
        """Initialize the debouncer.

        Args:
            delay: Quiet period in seconds before an action runs. 0 runs on the next loop tick.
        """
        self.delay = delay
        self._pending: dict[str, _Pending] = {}
        self._running: dict[str, asyncio.Task] = {}

    def schedule(self, key: str, action: Action) -> asyncio.Future:
        """Schedule ``action`` for ``key``, replacing any pending action for it.

        Returns:
            Future resolving to the action's result, or None when superseded or cancelled
        """
        loop = asyncio.get_running_loop()
        self.cancel(key)
        future = loop.create_future()
        if self.delay > 0:
            handle: asyncio.Handle = loop.call_later(self.delay, self._fire, key)
        else:
            handle = loop.call_soon(self._fire, key)
        self._pending[key] = _Pending(action, future, handle)
        return future

    def _fire(self, key: str) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        task = asyncio.ensure_future(self._run(pending))
        self._running[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._running.get(key) is task:
            del self._running[key]

    async def _run(self, pending: _Pending) -> None:
        try:
            result = await pending.action()
        except asyncio.CancelledError:
            if not pending.future.done():
                pending.future.set_result(None)
            raise
        except Exception as e:
            if not pending.future.done():
                pending.future.set_exception(e)
        else:
            if not pending.future.done():
                pending.future.set_result(result)

    def cancel(self, key: str) -> bool:
        """Cancel the pending action for ``key``. Returns True if one was pending."""
        pending = self._pending.pop(key, None)
        if pending is None:
            return False
        pending.handle.cancel()
        if not pending.future.done():
            pending.future.set_result(None)
        return True

    async def cancel_all(self) -> None:
        """Cancel every pending action and stop actions that are already running."""
        for key in list(self._pending):
            self.cancel(key)
        running = list(self._running.values())
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        self._running.clear()

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def is_running(self, key: str) -> bool:
        return key in self._running

    async def drain(self) -> None:
        """Wait until every pending and running action has finished."""
        while self._pending or self._running:
            waiting = [pending.future for pending in self._pending.values()]
            waiting.extend(self._running.values())
            await asyncio.gather(*waiting, return_exceptions=True)
