"""Periodic sync driven by the persisted autosync settings."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from webeep_sync.retry import AsyncioClock

if TYPE_CHECKING:
    from webeep_sync.filesystem.settings_store import SettingsStore
    from webeep_sync.retry import Clock
    from webeep_sync.services.sync_service import SyncEngine

logger = logging.getLogger(__name__)


class AutosyncScheduler:
    """Re-runs ``SyncEngine.sync()`` every ``autosync_interval`` seconds while enabled.

    Settings are re-read on every cycle, so interval changes apply from the
    next wait.
    """

    def __init__(
        self, engine: SyncEngine, store: SettingsStore, *, clock: Clock | None = None
    ) -> None:
        self._engine = engine
        self._store = store
        self._clock = clock or AsyncioClock()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        """Loop until autosync is disabled or the task is cancelled."""
        while self._store.settings.autosync_enabled:
            await self._engine.sync()
            interval = self._store.settings.autosync_interval
            logger.debug("Next autosync in %d seconds", interval)
            await self._clock.sleep(interval)
        logger.info("Autosync disabled, scheduler exiting")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    async def set_autosync(self, enabled: bool) -> None:
        """Persist the flag and start or stop the loop accordingly."""
        self._store.set_autosync(enabled)
        self._store.write()
        if enabled:
            self.start()
        else:
            await self.stop()
