"""Tests for the periodic sync scheduler."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from webeep_sync.filesystem.settings_store import SettingsStore
from webeep_sync.services.autosync import AutosyncScheduler

if TYPE_CHECKING:
    from collections.abc import Callable

    from tests.conftest import FakeClock
    from webeep_sync.config import Settings


class FakeEngine:
    """Counts sync passes and runs a hook after each one."""

    def __init__(self, after_sync: Callable[[int], None] | None = None) -> None:
        self.calls = 0
        self._after_sync = after_sync

    async def sync(self) -> None:
        self.calls += 1
        if self._after_sync is not None:
            self._after_sync(self.calls)


class TestAutosyncScheduler:
    async def test_syncs_every_interval_until_disabled(
        self, store: SettingsStore, clock: FakeClock
    ) -> None:
        def disable_on_third(calls: int) -> None:
            if calls == 3:
                store.set_autosync(False)

        engine = FakeEngine(disable_on_third)
        scheduler = AutosyncScheduler(engine, store, clock=clock)  # type: ignore[arg-type]

        await scheduler.run()

        assert engine.calls == 3
        assert clock.sleeps == [7200, 7200, 7200]

    async def test_interval_change_applies_to_next_wait(
        self, store: SettingsStore, clock: FakeClock
    ) -> None:
        def adjust(calls: int) -> None:
            if calls == 1:
                store.set_autosync_interval(600)
            else:
                store.set_autosync(False)

        engine = FakeEngine(adjust)
        scheduler = AutosyncScheduler(engine, store, clock=clock)  # type: ignore[arg-type]

        await scheduler.run()

        assert clock.sleeps == [600, 600]

    async def test_disabled_autosync_never_syncs(
        self, store: SettingsStore, clock: FakeClock
    ) -> None:
        store.set_autosync(False)
        engine = FakeEngine()

        await AutosyncScheduler(engine, store, clock=clock).run()  # type: ignore[arg-type]

        assert engine.calls == 0
        assert clock.sleeps == []

    async def test_start_and_stop(self, store: SettingsStore) -> None:
        engine = FakeEngine()
        scheduler = AutosyncScheduler(engine, store)  # type: ignore[arg-type]

        scheduler.start()
        scheduler.start()
        await asyncio.sleep(0)

        assert scheduler.running
        assert engine.calls == 1

        await scheduler.stop()
        assert not scheduler.running
        await scheduler.stop()

    async def test_set_autosync_persists_and_toggles_loop(
        self, store: SettingsStore, settings: Settings
    ) -> None:
        scheduler = AutosyncScheduler(FakeEngine(), store)  # type: ignore[arg-type]

        await scheduler.set_autosync(True)
        assert scheduler.running

        await scheduler.set_autosync(False)
        assert not scheduler.running
        reloaded = SettingsStore(settings.store_path, settings.default_download_path)
        assert reloaded.load().settings.autosync_enabled is False
