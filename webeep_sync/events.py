"""Typed event bus used to notify the shell about client and sync activity."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from webeep_sync.models import Course, SyncResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Disconnected:
    """The remote service became unreachable."""


@dataclass(frozen=True)
class Reconnected:
    """The remote service is reachable again after an outage."""


@dataclass(frozen=True)
class UsernameResolved:
    username: str


@dataclass(frozen=True)
class CoursesUpdated:
    courses: list[Course]


@dataclass(frozen=True)
class AuthStateChanged:
    logged_in: bool


@dataclass(frozen=True)
class SyncStarted:
    """A sync pass began."""


@dataclass(frozen=True)
class SyncProgress:
    """Progress of one file transfer plus the pass-wide file counters."""

    course_id: int
    filename: str
    downloaded_bytes: int
    total_bytes: int
    files_done: int
    files_total: int


@dataclass(frozen=True)
class CourseSynced:
    course_id: int
    course_name: str
    downloaded: int
    deleted: int
    failed: int


@dataclass(frozen=True)
class NewFiles:
    files: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SyncStopped:
    result: SyncResult


E = TypeVar("E")


class EventBus:
    """Publish/subscribe surface keyed by event class.

    Listeners are plain callables invoked synchronously in subscription order.
    A listener that raises is logged and does not prevent delivery to the
    others, nor does it propagate into the component that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: dict[type[Any], list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, kind: type[E], listener: Callable[[E], None]) -> Callable[[], None]:
        """Register a listener for one event kind. Returns an unsubscribe callable."""
        self._listeners[kind].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(kind, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def emit(self, event: object) -> None:
        """Deliver an event to every listener subscribed to its class."""
        for listener in list(self._listeners.get(type(event), [])):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener for %s failed", type(event).__name__)
