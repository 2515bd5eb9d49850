"""Shared test fixtures for WeBeep Sync."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import httpx
import pytest

from webeep_sync.config import Settings
from webeep_sync.events import EventBus
from webeep_sync.exceptions import AuthError
from webeep_sync.filesystem.file_index import LocalFileIndex
from webeep_sync.filesystem.settings_store import SettingsStore
from webeep_sync.services.moodle_client import WS_PATH, MoodleClient
from webeep_sync.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

MOODLE_URL = "https://moodle.test"


class FakeClock:
    """Clock that records requested sleeps and returns immediately."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeLogin:
    """Login provider handing out a fixed sequence of tokens."""

    def __init__(self, token: str | None = "token-1", *, reject: bool = False) -> None:
        self._token = token
        self.reject = reject
        self.login_calls = 0

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_logged(self) -> bool:
        return self._token is not None

    async def login(self) -> None:
        self.login_calls += 1
        if self.reject:
            msg = "Login rejected"
            raise AuthError(msg)
        self._token = f"token-{self.login_calls + 1}"


def moodle_file(
    filename: str,
    *,
    filepath: str = "/",
    size: int | None = None,
    modified: int = 1_700_000_000,
    url: str | None = None,
) -> dict[str, Any]:
    """A ``core_course_get_contents`` content entry of type file."""
    return {
        "type": "file",
        "filename": filename,
        "filepath": filepath,
        "filesize": size if size is not None else len(filename),
        "fileurl": url or f"{MOODLE_URL}/webservice/pluginfile.php/{filename}",
        "timecreated": modified - 100,
        "timemodified": modified,
    }


def materials(*modules: tuple[str, list[dict[str, Any]]], name: str = "Materials") -> list[Any]:
    """Course contents with a general section and a Materials section."""
    return [
        {"id": 1, "name": "General", "modules": [{"id": 10, "name": "Announcements"}]},
        {
            "id": 2,
            "name": name,
            "modules": [
                {"id": 100 + i, "name": module_name, "contents": contents}
                for i, (module_name, contents) in enumerate(modules)
            ],
        },
    ]


@dataclass
class MoodleStub:
    """In-memory Moodle web service answering through ``httpx.MockTransport``."""

    userid: int = 42
    fullname: str = "Ada Lovelace"
    courses: list[dict[str, Any]] = field(default_factory=list)
    contents: dict[int, Any] = field(default_factory=dict)
    files: dict[str, bytes] = field(default_factory=dict)
    network_failures: int = 0
    invalid_token_responses: int = 0
    ws_requests: list[dict[str, str]] = field(default_factory=list)
    file_requests: list[str] = field(default_factory=list)
    on_ws_request: Callable[[dict[str, str]], None] | None = None

    def add_file(self, filename: str, body: bytes, **kwargs: Any) -> dict[str, Any]:
        entry = moodle_file(filename, size=len(body), **kwargs)
        self.files[httpx.URL(entry["fileurl"]).path] = body
        return entry

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == WS_PATH:
            return self._handle_ws(request)
        self.file_requests.append(request.url.path)
        body = self.files.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=body)

    def _handle_ws(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.ws_requests.append(form)
        if self.on_ws_request is not None:
            self.on_ws_request(form)
        if self.network_failures > 0:
            self.network_failures -= 1
            raise httpx.ConnectError("connection refused", request=request)
        if self.invalid_token_responses > 0:
            self.invalid_token_responses -= 1
            return _json({"exception": "moodle_exception", "errorcode": "invalidtoken"})

        function = form["wsfunction"]
        if function == "core_webservice_get_site_info":
            return _json({"userid": self.userid, "fullname": self.fullname, "sitename": "Test"})
        if function == "core_enrol_get_users_courses":
            return _json(self.courses)
        if function == "core_course_get_contents":
            course_id = int(form["courseid"])
            if course_id not in self.contents:
                return _json(
                    {"exception": "moodle_exception", "errorcode": "invalidrecord", "message": "?"}
                )
            return _json(self.contents[course_id])
        return _json({"exception": "moodle_exception", "errorcode": "invalidfunction"})


def _json(data: Any) -> httpx.Response:
    return httpx.Response(
        200, content=json.dumps(data).encode(), headers={"content-type": "application/json"}
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        moodle_url=MOODLE_URL,
        data_dir=tmp_path / "data",
        default_download_path=tmp_path / "downloads",
    )


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded(events: EventBus) -> list[object]:
    """Every event emitted on the bus, in order."""
    seen: list[object] = []
    original_emit = events.emit

    def emit(event: object) -> None:
        seen.append(event)
        original_emit(event)

    events.emit = emit  # type: ignore[method-assign]
    return seen


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def login() -> FakeLogin:
    return FakeLogin()


@pytest.fixture
def stub() -> MoodleStub:
    return MoodleStub()


@pytest.fixture
async def http_client(stub: MoodleStub) -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub)) as client:
        yield client


@pytest.fixture
def client(
    settings: Settings,
    login: FakeLogin,
    events: EventBus,
    http_client: httpx.AsyncClient,
    clock: FakeClock,
) -> MoodleClient:
    return MoodleClient(settings, login, events, http_client=http_client, clock=clock)


@pytest.fixture
def store(settings: Settings) -> SettingsStore:
    return SettingsStore(settings.store_path, settings.default_download_path)


@pytest.fixture
def index(store: SettingsStore) -> LocalFileIndex:
    return LocalFileIndex(store)


@pytest.fixture
def engine(
    client: MoodleClient, index: LocalFileIndex, store: SettingsStore, events: EventBus
) -> SyncEngine:
    return SyncEngine(client, index, store, events, max_concurrent_downloads=2)
