"""Index of files downloaded by previous sync passes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from webeep_sync.models.course import file_key

if TYPE_CHECKING:
    from webeep_sync.filesystem.settings_store import SettingsStore
    from webeep_sync.schemas.store import SyncRecord

logger = logging.getLogger(__name__)


class LocalFileIndex:
    """Per-course mapping of file identity to the metadata it was downloaded with.

    Records are kept inside the settings store document, so loading and
    persisting the index reads or rewrites that whole file. There is a single
    writer (the sync engine) on a single event loop, so no locking is done.
    """

    def __init__(self, store: SettingsStore) -> None:
        self._store = store

    @property
    def _files(self) -> dict[int, dict[str, SyncRecord]]:
        return self._store.data.persistence.files

    def get(self, course_id: int) -> dict[str, SyncRecord]:
        """Return a copy of the records for one course, keyed by file identity."""
        return dict(self._files.get(course_id, {}))

    def upsert(self, record: SyncRecord) -> None:
        self._files.setdefault(record.course_id, {})[
            file_key(record.filepath, record.filename)
        ] = record

    def remove(self, course_id: int, filepath: str, filename: str) -> SyncRecord | None:
        """Drop a record, returning it when it existed."""
        records = self._files.get(course_id)
        if records is None:
            return None
        removed = records.pop(file_key(filepath, filename), None)
        if not records:
            del self._files[course_id]
        return removed

    def load_from_disk(self) -> None:
        self._store.load()
        logger.debug(
            "Loaded file index with %d record(s)",
            sum(len(records) for records in self._files.values()),
        )

    def persist(self) -> None:
        self._store.write()
