"""In-memory domain models for WeBeep Sync."""

from webeep_sync.models.course import Course, FileInfo
from webeep_sync.models.sync import CoursePlan, FileFailure, SyncedFile, SyncResult

__all__ = [
    "Course",
    "CoursePlan",
    "FileFailure",
    "FileInfo",
    "SyncResult",
    "SyncedFile",
]
