"""Component wiring: every long-lived object is built once here and injected."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from webeep_sync.events import EventBus
from webeep_sync.filesystem.file_index import LocalFileIndex
from webeep_sync.filesystem.settings_store import SettingsStore
from webeep_sync.services.auth_service import LoginManager
from webeep_sync.services.autosync import AutosyncScheduler
from webeep_sync.services.moodle_client import MoodleClient
from webeep_sync.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    import httpx

    from webeep_sync.config import Settings
    from webeep_sync.retry import Clock

logger = logging.getLogger(__name__)


@dataclass
class Application:
    settings: Settings
    events: EventBus
    store: SettingsStore
    index: LocalFileIndex
    login: LoginManager
    client: MoodleClient
    engine: SyncEngine
    autosync: AutosyncScheduler


@asynccontextmanager
async def create_app(
    settings: Settings,
    *,
    prompt: Callable[[], Awaitable[tuple[str, str] | None]] | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
) -> AsyncIterator[Application]:
    """Build, load, and later close the application components."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    events = EventBus()
    store = SettingsStore(settings.store_path, settings.default_download_path)
    index = LocalFileIndex(store)
    index.load_from_disk()
    login = LoginManager(settings, events, prompt, http_client=http_client)
    if login.load():
        logger.debug("Restored stored token")
    client = MoodleClient(settings, login, events, http_client=http_client, clock=clock)
    engine = SyncEngine(
        client, index, store, events, max_concurrent_downloads=settings.max_concurrent_downloads
    )
    app = Application(
        settings=settings,
        events=events,
        store=store,
        index=index,
        login=login,
        client=client,
        engine=engine,
        autosync=AutosyncScheduler(engine, store, clock=clock),
    )
    try:
        yield app
    finally:
        await app.autosync.stop()
        engine.stop()
        await client.aclose()
