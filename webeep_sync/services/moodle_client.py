"""Moodle web service client: courses, file listings, and file downloads.

Every web service call goes through :meth:`MoodleClient.call`, which owns the
recovery policy:

1. While disconnected, or without a token, calls short-circuit to ``None``.
2. An ``invalidtoken`` error triggers one interactive re-authentication and
   one retry of the call. A second rejection gives up with ``None``.
3. A transport failure marks the client disconnected and retries the same
   request every ``reconnect_interval`` seconds until it succeeds, then marks
   the client connected again and returns the result to the caller.

Each failing call runs its own retry loop. ``Disconnected``/``Reconnected``
are only emitted on state transitions, so concurrent loops report one outage
once. Any answer from the server ends the outage, even an error. When the
last retry loop is abandoned by its caller, a background task owned by the
client keeps retrying until the server answers.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from webeep_sync.events import CoursesUpdated, Disconnected, Reconnected, UsernameResolved
from webeep_sync.exceptions import AuthError, NetworkError, RemoteDataError, WebeepSyncError
from webeep_sync.models import Course, FileInfo
from webeep_sync.retry import AsyncioClock, RetryPolicy
from webeep_sync.schemas.moodle import COURSE_CONTENTS, ENROLLED_COURSES, CourseSection, SiteInfo

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from webeep_sync.config import Settings
    from webeep_sync.events import EventBus
    from webeep_sync.retry import Clock
    from webeep_sync.services.auth_service import LoginProvider

logger = logging.getLogger(__name__)

WS_PATH = "/webservice/rest/server.php"
INVALID_TOKEN_ERRORCODE = "invalidtoken"

_COURSE_NAME_RE = re.compile(r"\d+ - (.+) \(.+\)")


def normalize_course_name(fullname: str) -> str:
    """Strip the ``"<year> - "`` prefix and ``" (<code>)"`` suffix from a course name.

    >>> normalize_course_name("2023 - Systems Programming (SP)")
    'Systems Programming'

    The pattern may appear anywhere in the name; names that do not contain
    both parts are returned unchanged.
    """
    match = _COURSE_NAME_RE.search(fullname)
    return match.group(1) if match else fullname


def module_file_path(module_name: str, filepath: str | None) -> str:
    """Namespace a Moodle ``filepath`` (usually ``"/"``) under its module name."""
    parts = [module_name, *(filepath or "").split("/")]
    return "/".join(part for part in parts if part)


def find_materials_section(
    sections: Iterable[CourseSection], names: Iterable[str]
) -> CourseSection | None:
    wanted = set(names)
    return next((section for section in sections if section.name in wanted), None)


def flatten_section_files(section: CourseSection) -> list[FileInfo]:
    """Collect the ``file`` contents of every module in a section."""
    files: list[FileInfo] = []
    for module in section.modules:
        for content in module.contents or []:
            if content.type != "file":
                continue
            files.append(
                FileInfo(
                    filename=content.filename,
                    filepath=module_file_path(module.name, content.filepath),
                    filesize=content.filesize,
                    fileurl=content.fileurl,
                    created_at=content.timecreated,
                    modified_at=content.timemodified,
                )
            )
    return files


def _is_invalid_token(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("errorcode") == INVALID_TOKEN_ERRORCODE


def _raise_for_exception(wsfunction: str, payload: Any) -> None:
    """Moodle reports application errors as a 200 response with an exception body."""
    if isinstance(payload, dict) and ("exception" in payload or "errorcode" in payload):
        code = payload.get("errorcode", "unknown")
        message = payload.get("message", "")
        msg = f"{wsfunction} failed: {code} {message}".rstrip()
        raise RemoteDataError(msg)


class MoodleClient:
    """Authenticated client for the Moodle web service API."""

    def __init__(
        self,
        settings: Settings,
        login: LoginProvider,
        events: EventBus,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._settings = settings
        self._login = login
        self._events = events
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.request_timeout, follow_redirects=True
        )
        self._clock = clock or AsyncioClock()
        self._retry_policy = retry_policy or RetryPolicy(interval=settings.reconnect_interval)
        self.userid: int | None = None
        self.username: str | None = None
        self.connected = True
        self.cached_courses: list[Course] = []
        self._disconnected_at: float | None = None
        self._retry_loops = 0
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def reconnecting_in_background(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def aclose(self) -> None:
        """Stop background reconnection and close the HTTP client unless it was injected."""
        if self._reconnect_task is not None:
            task, self._reconnect_task = self._reconnect_task, None
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> MoodleClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def is_logged(self) -> bool:
        return self._login.is_logged

    def _set_connected(self, connected: bool) -> None:
        if connected == self.connected:
            return
        self.connected = connected
        if connected:
            outage = self._clock.monotonic() - (self._disconnected_at or 0.0)
            self._disconnected_at = None
            logger.info("Connection to %s restored after %.0fs", self._settings.base_url, outage)
            self._events.emit(Reconnected())
        else:
            self._disconnected_at = self._clock.monotonic()
            logger.warning("Lost connection to %s", self._settings.base_url)
            self._events.emit(Disconnected())

    def _reconnect_in_background(self, wsfunction: str, data: dict[str, Any] | None) -> None:
        if self.connected or self.reconnecting_in_background:
            return
        logger.info("Retry loop abandoned, reconnecting in the background")
        self._reconnect_task = asyncio.create_task(self._reconnect(wsfunction, data))

    async def _reconnect(self, wsfunction: str, data: dict[str, Any] | None) -> None:
        policy = RetryPolicy(interval=self._retry_policy.interval)
        try:
            await policy.run(
                lambda: self._request(wsfunction, data),
                clock=self._clock,
                retry_on=(NetworkError,),
            )
        except WebeepSyncError as exc:
            logger.debug("Server answered the reconnect attempt with an error: %s", exc)
        self._set_connected(True)

    async def authenticate(self) -> None:
        """Obtain a fresh token through the interactive login provider.

        Raises AuthError when the user cancels or the credentials are rejected.
        """
        await self._login.login()
        if not self._login.is_logged:
            msg = "Login did not produce a token"
            raise AuthError(msg)

    async def _post(self, wsfunction: str, data: dict[str, Any] | None) -> Any:
        form: dict[str, Any] = {
            "wstoken": self._login.token or "",
            "wsfunction": wsfunction,
            "moodlewsrestformat": "json",
            "moodlewssettingfilter": "true",
            "moodlewssettinglang": self._settings.moodle_lang,
            **(data or {}),
        }
        try:
            resp = await self._http.post(f"{self._settings.base_url}{WS_PATH}", data=form)
        except httpx.TransportError as exc:
            msg = f"{wsfunction}: {exc.__class__.__name__}: {exc}"
            raise NetworkError(msg) from exc
        if resp.status_code >= 500:
            msg = f"{wsfunction}: HTTP {resp.status_code}"
            raise NetworkError(msg)
        if resp.status_code >= 400:
            msg = f"{wsfunction}: HTTP {resp.status_code}"
            raise RemoteDataError(msg)
        try:
            return resp.json()
        except ValueError:
            msg = f"{wsfunction} returned a non-JSON response"
            raise RemoteDataError(msg) from None

    async def _request(
        self, wsfunction: str, data: dict[str, Any] | None, *, reauthenticate: bool = True
    ) -> Any:
        """One request with invalid-token handling. Raises NetworkError on transport failure."""
        if not self._login.is_logged:
            return None
        payload = await self._post(wsfunction, data)
        if _is_invalid_token(payload):
            if not reauthenticate:
                logger.warning("Token rejected again after re-authentication (%s)", wsfunction)
                return None
            logger.info("Token rejected by %s, re-authenticating", wsfunction)
            try:
                await self.authenticate()
            except AuthError as exc:
                logger.warning("Re-authentication failed: %s", exc)
                return None
            return await self._request(wsfunction, data, reauthenticate=False)
        _raise_for_exception(wsfunction, payload)
        return payload

    async def call(
        self,
        wsfunction: str,
        data: dict[str, Any] | None = None,
        *,
        wait_for_reconnect: bool = True,
    ) -> Any:
        """Invoke a web service function and return its decoded JSON body.

        With ``wait_for_reconnect=False`` a transport failure raises
        NetworkError instead of entering the reconnect loop.
        """
        if not self.connected or not self._login.is_logged:
            return None
        try:
            return await self._request(wsfunction, data)
        except NetworkError as exc:
            if not wait_for_reconnect:
                raise
            logger.warning("Network error calling %s: %s", wsfunction, exc)
            self._set_connected(False)

        self._retry_loops += 1
        try:
            result = await self._retry_policy.run(
                lambda: self._request(wsfunction, data),
                clock=self._clock,
                retry_on=(NetworkError,),
            )
        except (NetworkError, asyncio.CancelledError):
            if self._retry_loops == 1:
                self._reconnect_in_background(wsfunction, data)
            raise
        except WebeepSyncError:
            self._set_connected(True)
            raise
        finally:
            self._retry_loops -= 1
        self._set_connected(True)
        return result

    async def get_user_id(self) -> int | None:
        """Resolve the current user's id and display name from the site info."""
        payload = await self.call("core_webservice_get_site_info")
        if payload is None:
            return None
        try:
            info = SiteInfo.model_validate(payload)
        except ValidationError as exc:
            msg = "Unexpected core_webservice_get_site_info response"
            raise RemoteDataError(msg) from exc
        self.userid = info.userid
        self.username = info.fullname
        self._events.emit(UsernameResolved(username=info.fullname))
        return info.userid

    async def list_courses(self) -> list[Course]:
        """Enrolled courses with normalized names; the cached list on failure."""
        try:
            userid = self.userid if self.userid is not None else await self.get_user_id()
            if userid is None:
                return self.cached_courses
            payload = await self.call(
                "core_enrol_get_users_courses", {"userid": userid}, wait_for_reconnect=False
            )
            if payload is None:
                return self.cached_courses
            enrolled = ENROLLED_COURSES.validate_python(payload)
        except (NetworkError, RemoteDataError, ValidationError) as exc:
            logger.warning("Could not list courses, using cached list: %s", exc)
            return self.cached_courses

        courses = [Course(id=c.id, name=normalize_course_name(c.fullname)) for c in enrolled]
        self.cached_courses = courses
        self._events.emit(CoursesUpdated(courses=courses))
        return courses

    async def fetch_files(self, course_id: int) -> list[FileInfo]:
        """Files of a course's Materials section.

        Raises RemoteDataError when the listing is unavailable or has no
        Materials section, so callers can tell "nothing there" from "could
        not look".
        """
        payload = await self.call("core_course_get_contents", {"courseid": course_id})
        if payload is None:
            msg = f"No contents available for course {course_id}"
            raise RemoteDataError(msg)
        try:
            sections = COURSE_CONTENTS.validate_python(payload)
        except ValidationError as exc:
            msg = f"Unexpected core_course_get_contents response for course {course_id}"
            raise RemoteDataError(msg) from exc
        section = find_materials_section(sections, self._settings.materials_section_names)
        if section is None:
            msg = f"Course {course_id} has no Materials section"
            raise RemoteDataError(msg)
        return flatten_section_files(section)

    async def list_files(self, course_id: int) -> list[FileInfo]:
        """Like :meth:`fetch_files`, but an unavailable listing is an empty one."""
        try:
            return await self.fetch_files(course_id)
        except RemoteDataError as exc:
            logger.info("%s", exc)
            return []

    @asynccontextmanager
    async def open_file(self, fileurl: str) -> AsyncIterator[httpx.Response]:
        """Stream a file body. The token goes in the query string, as pluginfile expects."""
        params = {"token": self._login.token or ""}
        try:
            async with self._http.stream("GET", fileurl, params=params) as resp:
                if resp.status_code >= 400:
                    msg = f"Download failed: HTTP {resp.status_code}"
                    raise RemoteDataError(msg)
                yield resp
        except httpx.TransportError as exc:
            msg = f"Download interrupted: {exc.__class__.__name__}: {exc}"
            raise NetworkError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Download failed: {exc}"
            raise RemoteDataError(msg) from exc
