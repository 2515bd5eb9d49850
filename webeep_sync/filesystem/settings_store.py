"""JSON-backed store for user settings and sync bookkeeping."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from webeep_sync.filesystem.atomic import write_text_atomic
from webeep_sync.schemas.store import CoursePreference, StoreData, UserSettings

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from webeep_sync.models import Course

logger = logging.getLogger(__name__)


class SettingsStore:
    """Owns the store file: user settings, course flags, and the file index.

    Mutators only touch memory; call ``write()`` to persist. Writes always
    rewrite the whole file atomically.
    """

    def __init__(self, path: Path, default_download_path: Path) -> None:
        self.path = path
        self._default_download_path = default_download_path
        self.data = self._defaults()

    def _defaults(self) -> StoreData:
        return StoreData(settings=UserSettings(download_path=self._default_download_path))

    @property
    def settings(self) -> UserSettings:
        return self.data.settings

    def load(self) -> StoreData:
        """Read the store file, falling back to defaults when missing or unreadable."""
        if not self.path.exists():
            self.data = self._defaults()
            return self.data
        try:
            self.data = StoreData.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as exc:
            backup = self.path.with_name(self.path.name + ".corrupt")
            logger.warning(
                "Store file %s is unreadable (%s), moving it to %s", self.path, exc, backup
            )
            self.path.replace(backup)
            self.data = self._defaults()
        return self.data

    def write(self) -> None:
        """Persist the whole store atomically."""
        write_text_atomic(self.path, self.data.model_dump_json(indent=2))

    def register_courses(self, courses: Iterable[Course]) -> None:
        """Remember every listed course; unknown ones are synced by default."""
        known = self.data.persistence.courses
        for course in courses:
            pref = known.get(course.id)
            if pref is None:
                known[course.id] = CoursePreference(name=course.name)
            else:
                pref.name = course.name

    def should_sync(self, course_id: int) -> bool:
        pref = self.data.persistence.courses.get(course_id)
        return pref.should_sync if pref is not None else True

    def set_should_sync(self, course_id: int, should_sync: bool) -> None:
        pref = self.data.persistence.courses.get(course_id)
        if pref is None:
            msg = f"Unknown course id: {course_id}"
            raise KeyError(msg)
        pref.should_sync = should_sync

    def set_autosync(self, enabled: bool) -> None:
        self.data.settings.autosync_enabled = enabled

    def set_autosync_interval(self, seconds: int) -> None:
        """Raises ``pydantic.ValidationError`` when below the allowed minimum."""
        self.data.settings = UserSettings.model_validate(
            {**self.data.settings.model_dump(), "autosync_interval": seconds}
        )

    def set_download_path(self, path: Path) -> None:
        self.data.settings.download_path = path

    def mark_synced(self, timestamp: str) -> None:
        self.data.persistence.last_synced = timestamp
