"""Sync service: remote/index comparison and the download pass."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from webeep_sync.events import CourseSynced, NewFiles, SyncProgress, SyncStarted, SyncStopped
from webeep_sync.exceptions import LocalIOError, NetworkError, RemoteDataError, WebeepSyncError
from webeep_sync.filesystem.atomic import temp_path_for
from webeep_sync.models import CoursePlan, FileFailure, SyncedFile, SyncResult
from webeep_sync.schemas.store import SyncRecord
from webeep_sync.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import Callable

    from webeep_sync.events import EventBus
    from webeep_sync.filesystem.file_index import LocalFileIndex
    from webeep_sync.filesystem.settings_store import SettingsStore
    from webeep_sync.models import Course, FileInfo
    from webeep_sync.services.moodle_client import MoodleClient

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1F]')
_TRAILING_RE = re.compile(r"[\s.]+$")


def _record_exists(record: SyncRecord) -> bool:
    return Path(record.local_path).is_file()


def compute_sync_plan(
    remote_files: list[FileInfo],
    records: dict[str, SyncRecord],
    exists: Callable[[SyncRecord], bool] = _record_exists,
    expected_path: Callable[[FileInfo], str | None] | None = None,
) -> CoursePlan:
    """Compare a course's remote listing with its index records.

    - no record, a record whose local file is gone, a record stored somewhere
      other than ``expected_path(info)``, or a size / modification time
      mismatch -> download
    - a record with no remote counterpart -> delete locally
    - anything else -> unchanged
    """
    plan = CoursePlan()
    seen: set[str] = set()

    for info in remote_files:
        key = info.key
        if key in seen:
            logger.debug("Duplicate remote entry %s ignored", key)
            continue
        seen.add(key)

        record = records.get(key)
        if (
            record is not None
            and record.filesize == info.filesize
            and record.modified_at == info.modified_at
            and (expected_path is None or record.local_path == expected_path(info))
            and exists(record)
        ):
            plan.unchanged.append(info)
        else:
            plan.to_download.append(info)

    plan.to_delete = [record for key, record in sorted(records.items()) if key not in seen]
    return plan


def sanitize_segment(segment: str) -> str:
    """Make one path segment safe on every desktop filesystem."""
    cleaned = _TRAILING_RE.sub("", _UNSAFE_CHARS_RE.sub("_", segment).lstrip())
    if not cleaned:
        return "_"
    return cleaned


def local_path_for(download_root: Path, course: Course, info: FileInfo) -> Path:
    """``<root>/<course name>/<filepath...>/<filename>``, kept inside ``download_root``."""
    segments = [course.name, *info.filepath.split("/"), info.filename]
    path = download_root.joinpath(*(sanitize_segment(s) for s in segments if s))
    if not path.resolve().is_relative_to(download_root.resolve()):
        msg = f"Refusing to write outside the download folder: {path}"
        raise LocalIOError(msg)
    return path


class SyncEngine:
    """Runs sync passes for every course flagged for syncing.

    Only one pass runs at a time; calling ``sync()`` while one is in progress
    is a no-op. All index mutations happen on the event loop that runs the
    pass, and a record is written only after its file reached its final path.
    """

    def __init__(
        self,
        client: MoodleClient,
        index: LocalFileIndex,
        store: SettingsStore,
        events: EventBus,
        *,
        max_concurrent_downloads: int = 4,
    ) -> None:
        if max_concurrent_downloads < 1:
            msg = f"max_concurrent_downloads must be >= 1, got {max_concurrent_downloads}"
            raise ValueError(msg)
        self._client = client
        self._index = index
        self._store = store
        self._events = events
        self._max_concurrent = max_concurrent_downloads
        self._syncing = False
        self._cancelled = False
        self._run_task: asyncio.Task[None] | None = None
        self._files_done = 0
        self._files_total = 0

    @property
    def syncing(self) -> bool:
        return self._syncing

    def stop(self) -> None:
        """Cancel the running pass. Transfers in flight are aborted, never indexed."""
        if not self._syncing:
            return
        logger.info("Stopping sync")
        self._cancelled = True
        if self._run_task is not None:
            self._run_task.cancel()

    async def sync(self) -> SyncResult | None:
        """Run one pass. Returns None when a pass was already running."""
        if self._syncing:
            logger.info("Sync already in progress, ignoring request")
            return None
        self._syncing = True
        self._cancelled = False
        self._files_done = 0
        self._files_total = 0
        result = SyncResult(started_at=now_utc())
        self._events.emit(SyncStarted())
        logger.info("Sync started")
        self._run_task = asyncio.create_task(self._run(result))
        try:
            await self._run_task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("Sync pass aborted")
        finally:
            self._run_task = None
            result.cancelled = self._cancelled
            result.finished_at = now_utc()
            self._persist()
            self._syncing = False
            logger.info("Sync finished: %s", result.summary())
            if result.new_files:
                self._events.emit(NewFiles(files=[f.local_path for f in result.new_files]))
            self._events.emit(SyncStopped(result=result))
        return result

    async def _run(self, result: SyncResult) -> None:
        if not self._client.is_logged:
            result.failures.append(
                FileFailure(
                    course_id=None, course_name="", filepath="", filename="", error="Not logged in"
                )
            )
            return

        courses = await self._client.list_courses()
        self._store.register_courses(courses)
        selected = [course for course in courses if self._store.should_sync(course.id)]
        logger.info("Syncing %d of %d course(s)", len(selected), len(courses))

        download_root = Path(self._store.settings.download_path).expanduser()
        semaphore = asyncio.Semaphore(self._max_concurrent)
        outcomes = await asyncio.gather(
            *(self._sync_course(course, download_root, semaphore, result) for course in selected),
            return_exceptions=True,
        )
        for course, outcome in zip(selected, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                logger.info("Sync of %s aborted", course.name)
            elif isinstance(outcome, BaseException):
                logger.error("Sync of %s failed unexpectedly: %r", course.name, outcome)
                result.failures.append(
                    FileFailure(
                        course_id=course.id,
                        course_name=course.name,
                        filepath="",
                        filename="",
                        error=str(outcome) or outcome.__class__.__name__,
                    )
                )
        if not self._cancelled:
            self._store.mark_synced(format_iso(result.started_at))

    async def _sync_course(
        self,
        course: Course,
        download_root: Path,
        semaphore: asyncio.Semaphore,
        result: SyncResult,
    ) -> None:
        try:
            remote_files = await self._client.fetch_files(course.id)
        except (NetworkError, RemoteDataError) as exc:
            logger.warning("Skipping %s: %s", course.name, exc)
            result.failures.append(
                FileFailure(
                    course_id=course.id,
                    course_name=course.name,
                    filepath="",
                    filename="",
                    error=str(exc),
                )
            )
            return

        def expected_path(info: FileInfo) -> str | None:
            try:
                return str(local_path_for(download_root, course, info))
            except LocalIOError:
                return None

        plan = compute_sync_plan(
            remote_files, self._index.get(course.id), expected_path=expected_path
        )
        logger.debug(
            "%s: %d to download, %d to delete, %d unchanged",
            course.name,
            len(plan.to_download),
            len(plan.to_delete),
            len(plan.unchanged),
        )
        self._files_total += len(plan.to_download)

        deleted = 0
        for record in plan.to_delete:
            if self._cancelled:
                return
            if self._delete_local(course, record, result):
                deleted += 1

        failures_before = len(result.failures)
        downloads = [
            self._download(course, info, download_root, semaphore, result)
            for info in plan.to_download
        ]
        outcomes = await asyncio.gather(*downloads, return_exceptions=True)
        downloaded = 0
        for info, outcome in zip(plan.to_download, outcomes, strict=True):
            if outcome is True:
                downloaded += 1
            elif isinstance(outcome, Exception):
                logger.error("Unexpected error downloading %s: %r", info.filename, outcome)
                result.failures.append(
                    FileFailure(
                        course_id=course.id,
                        course_name=course.name,
                        filepath=info.filepath,
                        filename=info.filename,
                        error=str(outcome) or outcome.__class__.__name__,
                    )
                )

        if not plan.is_empty:
            self._persist()
        self._events.emit(
            CourseSynced(
                course_id=course.id,
                course_name=course.name,
                downloaded=downloaded,
                deleted=deleted,
                failed=len(result.failures) - failures_before,
            )
        )

    def _delete_local(self, course: Course, record: SyncRecord, result: SyncResult) -> bool:
        path = Path(record.local_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete %s: %s", path, exc)
            result.failures.append(
                FileFailure(
                    course_id=course.id,
                    course_name=course.name,
                    filepath=record.filepath,
                    filename=record.filename,
                    error=f"Delete failed: {exc}",
                )
            )
            return False
        self._index.remove(record.course_id, record.filepath, record.filename)
        logger.info("Removed %s (no longer on the remote)", path)
        result.deleted_files.append(
            SyncedFile(
                course_id=course.id,
                course_name=course.name,
                filepath=record.filepath,
                filename=record.filename,
                local_path=str(path),
            )
        )
        return True

    async def _download(
        self,
        course: Course,
        info: FileInfo,
        download_root: Path,
        semaphore: asyncio.Semaphore,
        result: SyncResult,
    ) -> bool:
        if self._cancelled:
            return False
        async with semaphore:
            if self._cancelled:
                return False
            try:
                target = local_path_for(download_root, course, info)
                await self._fetch_to_path(course, info, target)
            except WebeepSyncError as exc:
                logger.warning("Failed to download %s/%s: %s", info.filepath, info.filename, exc)
                result.failures.append(
                    FileFailure(
                        course_id=course.id,
                        course_name=course.name,
                        filepath=info.filepath,
                        filename=info.filename,
                        error=str(exc),
                    )
                )
                return False

        self._index.upsert(
            SyncRecord(
                course_id=course.id,
                filepath=info.filepath,
                filename=info.filename,
                filesize=info.filesize,
                modified_at=info.modified_at,
                created_at=info.created_at,
                local_path=str(target),
                synced_at=format_iso(now_utc()),
            )
        )
        self._files_done += 1
        result.new_files.append(
            SyncedFile(
                course_id=course.id,
                course_name=course.name,
                filepath=info.filepath,
                filename=info.filename,
                local_path=str(target),
            )
        )
        logger.info("Downloaded %s", target)
        return True

    async def _fetch_to_path(self, course: Course, info: FileInfo, target: Path) -> None:
        """Stream into a temporary sibling of ``target``, then move it into place."""
        try:
            tmp = temp_path_for(target)
        except OSError as exc:
            msg = f"Cannot create {target.parent}: {exc}"
            raise LocalIOError(msg) from exc
        try:
            received = 0
            async with self._client.open_file(info.fileurl) as resp:
                total = int(resp.headers.get("content-length") or info.filesize)
                with open(tmp, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        f.write(chunk)
                        received += len(chunk)
                        self._events.emit(
                            SyncProgress(
                                course_id=course.id,
                                filename=info.filename,
                                downloaded_bytes=received,
                                total_bytes=total,
                                files_done=self._files_done,
                                files_total=self._files_total,
                            )
                        )
            if info.modified_at:
                os.utime(tmp, (info.modified_at, info.modified_at))
            os.replace(tmp, target)
        except OSError as exc:
            msg = f"Cannot write {target}: {exc}"
            raise LocalIOError(msg) from exc
        finally:
            tmp.unlink(missing_ok=True)

    def _persist(self) -> None:
        try:
            self._index.persist()
        except OSError:
            logger.exception("Failed to persist the file index")
