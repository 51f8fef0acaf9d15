"""Polling watcher that turns file modifications in the vault into change notifications."""

import asyncio
from typing import Callable

from loguru import logger

from .vault import VaultNoteStore

DeleteCallback = Callable[[str], None]


class VaultWatcher:
    """Polls modification times of contact notes and notifies the store's subscribers.

    It also sees the sync engine's own writes; the engine's locks and
    debouncing keep those from turning into endless sync passes.
    """

    def __init__(
        self,
        *,
        store: VaultNoteStore,
        poll_interval: float = 2.0,
        on_delete: DeleteCallback | None = None,
    ):
        self.store = store
        self.poll_interval = poll_interval
        self.on_delete = on_delete
        self._mtimes: dict[str, float] = {}
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._running:
            return
        self._mtimes = await self._snapshot()
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Watching {self.store.contacts_dir} every {self.poll_interval}s")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _snapshot(self) -> dict[str, float]:
        mtimes = {}
        for path in await self.store.list_all_contact_notes():
            try:
                mtimes[path] = (self.store.root / path).stat().st_mtime
            except FileNotFoundError:
                continue
        return mtimes

    async def poll(self) -> list[str]:
        """Check for changes once and dispatch notifications.

        Returns:
            Paths reported as changed
        """
        current = await self._snapshot()
        changed = [path for path, mtime in current.items() if self._mtimes.get(path) != mtime]
        deleted = [path for path in self._mtimes if path not in current]
        self._mtimes = current

        for path in deleted:
            logger.debug(f"Note deleted: {path}")
            if self.on_delete is not None:
                self.on_delete(path)
        for path in changed:
            logger.debug(f"Note changed: {path}")
            self.store.emit(path)
        return changed

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll()
            except Exception as e:
                logger.error(f"Error while polling the vault: {e}")
