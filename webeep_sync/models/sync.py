"""Sync plan and result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from webeep_sync.models.course import FileInfo
    from webeep_sync.schemas.store import SyncRecord


@dataclass
class CoursePlan:
    """What one course needs: files to fetch, records to drop, files to leave alone."""

    to_download: list[FileInfo] = field(default_factory=list)
    to_delete: list[SyncRecord] = field(default_factory=list)
    unchanged: list[FileInfo] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_download and not self.to_delete


@dataclass(frozen=True)
class SyncedFile:
    """A file written or removed during a pass."""

    course_id: int
    course_name: str
    filepath: str
    filename: str
    local_path: str


@dataclass(frozen=True)
class FileFailure:
    """A file (or whole course when ``filename`` is empty) that could not be synced."""

    course_id: int | None
    course_name: str
    filepath: str
    filename: str
    error: str


@dataclass
class SyncResult:
    """Outcome of one sync pass."""

    started_at: datetime
    finished_at: datetime | None = None
    new_files: list[SyncedFile] = field(default_factory=list)
    deleted_files: list[SyncedFile] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.failures and not self.cancelled

    def summary(self) -> str:
        """One-line human readable description."""
        parts = [
            f"{len(self.new_files)} downloaded",
            f"{len(self.deleted_files)} deleted",
            f"{len(self.failures)} failed",
        ]
        if self.cancelled:
            parts.append("cancelled")
        return ", ".join(parts)
