"""Authentication provider: obtains, stores, and forgets the Moodle bearer token."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from webeep_sync.events import AuthStateChanged
from webeep_sync.exceptions import AuthError, NetworkError
from webeep_sync.filesystem.atomic import write_text_atomic
from webeep_sync.schemas.moodle import TokenResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from webeep_sync.config import Settings
    from webeep_sync.events import EventBus

logger = logging.getLogger(__name__)

TOKEN_PATH = "/login/token.php"


@runtime_checkable
class LoginProvider(Protocol):
    """What the remote client needs from the authentication collaborator."""

    @property
    def is_logged(self) -> bool: ...

    @property
    def token(self) -> str | None: ...

    async def login(self) -> None:
        """Interactively obtain a fresh token. Raises AuthError on cancel or rejection."""
        ...


class LoginManager:
    """Token lifecycle for a single account.

    The token is stored as JSON next to the settings store, readable only by
    the current user. ``prompt`` returns ``(username, password)``, or ``None``
    when the user dismissed it.
    """

    def __init__(
        self,
        settings: Settings,
        events: EventBus,
        prompt: Callable[[], Awaitable[tuple[str, str] | None]] | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._events = events
        self._prompt = prompt
        self._http_client = http_client
        self._token: str | None = None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_logged(self) -> bool:
        return self._token is not None

    def load(self) -> bool:
        """Restore a previously stored token. Returns whether one was found."""
        path = self._settings.token_path
        if not path.exists():
            return False
        try:
            token = json.loads(path.read_text(encoding="utf-8")).get("token")
        except (ValueError, AttributeError):
            logger.warning("Ignoring unreadable token file %s", path)
            return False
        if not isinstance(token, str) or not token:
            return False
        self._token = token
        return True

    def set_token(self, token: str) -> None:
        """Adopt a token obtained out of band and persist it."""
        token = token.strip()
        if not token:
            msg = "Token must not be empty"
            raise AuthError(msg)
        self._token = token
        write_text_atomic(self._settings.token_path, json.dumps({"token": token}), mode=0o600)
        self._events.emit(AuthStateChanged(logged_in=True))

    async def login(self) -> None:
        """Prompt for credentials and exchange them for a token."""
        if self._prompt is None:
            msg = "Interactive login is not available"
            raise AuthError(msg)
        credentials = await self._prompt()
        if credentials is None:
            msg = "Login cancelled"
            raise AuthError(msg)
        username, password = credentials
        token = await self._request_token(username, password)
        logger.info("Logged in as %s", username)
        self.set_token(token)

    async def logout(self) -> None:
        """Forget the token both in memory and on disk."""
        self._token = None
        self._settings.token_path.unlink(missing_ok=True)
        self._events.emit(AuthStateChanged(logged_in=False))

    async def _request_token(self, username: str, password: str) -> str:
        form = {"username": username, "password": password, "service": self._settings.ws_service}
        url = f"{self._settings.base_url}{TOKEN_PATH}"
        try:
            if self._http_client is not None:
                resp = await self._http_client.post(url, data=form)
            else:
                async with httpx.AsyncClient(timeout=self._settings.request_timeout) as client:
                    resp = await client.post(url, data=form)
        except httpx.TransportError as exc:
            msg = f"Token endpoint unreachable: {exc}"
            raise NetworkError(msg) from exc

        if resp.status_code != 200:
            msg = f"Token request failed: HTTP {resp.status_code}"
            raise AuthError(msg)
        try:
            data = TokenResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            msg = "Token endpoint returned an unexpected response"
            raise AuthError(msg) from exc
        if not data.token:
            msg = f"Login rejected: {data.error or data.errorcode or 'no token returned'}"
            raise AuthError(msg)
        return data.token
