"""Persisted user settings and file index."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class UserSettings(BaseModel):
    """Preferences edited by the user at runtime."""

    download_path: Path
    autosync_enabled: bool = True
    autosync_interval: int = Field(default=7200, ge=60)

    # Shell preferences, persisted but not interpreted by the sync core.
    language: str = "it"
    native_theme_source: str = "system"
    keep_open_in_background: bool = True
    tray_icon: bool = True
    open_at_login: bool = False


class CoursePreference(BaseModel):
    name: str
    should_sync: bool = True


class SyncRecord(BaseModel):
    """A file that was downloaded and is expected to exist at ``local_path``."""

    course_id: int
    filepath: str
    filename: str
    filesize: int
    modified_at: int
    created_at: int | None = None
    local_path: str
    synced_at: str


class Persistence(BaseModel):
    """State owned by the sync core."""

    courses: dict[int, CoursePreference] = Field(default_factory=dict)
    last_synced: str | None = None
    files: dict[int, dict[str, SyncRecord]] = Field(default_factory=dict)


class StoreData(BaseModel):
    """Whole content of the store file."""

    settings: UserSettings
    persistence: Persistence = Field(default_factory=Persistence)
