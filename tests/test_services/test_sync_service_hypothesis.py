"""Property-based tests for sync planning invariants."""

from __future__ import annotations

import string

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from webeep_sync.models import FileInfo
from webeep_sync.models.course import file_key
from webeep_sync.schemas.store import SyncRecord
from webeep_sync.services.sync_service import compute_sync_plan, sanitize_segment

PROPERTY_SETTINGS = settings(
    max_examples=250,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_SEGMENT = st.text(alphabet=string.ascii_lowercase + string.digits, min_size=1, max_size=8)
_FILEPATH = st.lists(_SEGMENT, min_size=1, max_size=3).map("/".join)
_FILENAME = st.builds(
    lambda stem, ext: f"{stem}.{ext}", _SEGMENT, st.sampled_from(["pdf", "zip", "txt"])
)
_META = st.tuples(st.integers(min_value=0, max_value=5), st.integers(min_value=0, max_value=5))
_LISTING = st.dictionaries(keys=st.tuples(_FILEPATH, _FILENAME), values=_META, max_size=10)


def _to_files(listing: dict[tuple[str, str], tuple[int, int]]) -> list[FileInfo]:
    return [
        FileInfo(
            filename=filename,
            filepath=filepath,
            filesize=size,
            fileurl=f"https://moodle.test/{filepath}/{filename}",
            created_at=None,
            modified_at=modified,
        )
        for (filepath, filename), (size, modified) in listing.items()
    ]


def _to_records(listing: dict[tuple[str, str], tuple[int, int]]) -> dict[str, SyncRecord]:
    return {
        file_key(filepath, filename): SyncRecord(
            course_id=1,
            filepath=filepath,
            filename=filename,
            filesize=size,
            modified_at=modified,
            local_path=f"/downloads/{filepath}/{filename}",
            synced_at="2025-01-01T00:00:00+00:00",
        )
        for (filepath, filename), (size, modified) in listing.items()
    }


class TestSyncPlanProperties:
    @PROPERTY_SETTINGS
    @given(remote=_LISTING, indexed=_LISTING, present=st.booleans())
    def test_each_key_is_classified_once(
        self,
        remote: dict[tuple[str, str], tuple[int, int]],
        indexed: dict[tuple[str, str], tuple[int, int]],
        present: bool,
    ) -> None:
        files = _to_files(remote)
        records = _to_records(indexed)

        plan = compute_sync_plan(files, records, exists=lambda _: present)

        download = {f.key for f in plan.to_download}
        unchanged = {f.key for f in plan.unchanged}
        delete = {file_key(r.filepath, r.filename) for r in plan.to_delete}
        assert download | unchanged == {f.key for f in files}
        assert download.isdisjoint(unchanged)
        assert delete == set(records) - {f.key for f in files}
        assert [file_key(r.filepath, r.filename) for r in plan.to_delete] == sorted(delete)

    @PROPERTY_SETTINGS
    @given(listing=_LISTING)
    def test_plan_against_own_records_is_empty(
        self, listing: dict[tuple[str, str], tuple[int, int]]
    ) -> None:
        plan = compute_sync_plan(_to_files(listing), _to_records(listing), exists=lambda _: True)
        assert plan.is_empty
        assert len(plan.unchanged) == len(listing)

    @PROPERTY_SETTINGS
    @given(listing=_LISTING)
    def test_missing_local_files_are_always_downloaded(
        self, listing: dict[tuple[str, str], tuple[int, int]]
    ) -> None:
        files = _to_files(listing)
        plan = compute_sync_plan(files, _to_records(listing), exists=lambda _: False)
        assert plan.to_download == files
        assert plan.to_delete == []

    @PROPERTY_SETTINGS
    @given(remote=_LISTING)
    def test_empty_index_downloads_everything(
        self, remote: dict[tuple[str, str], tuple[int, int]]
    ) -> None:
        files = _to_files(remote)
        plan = compute_sync_plan(files, {})
        assert plan.to_download == files
        assert plan.unchanged == []


class TestSanitizeSegmentProperties:
    @PROPERTY_SETTINGS
    @given(segment=st.text(max_size=40))
    def test_result_is_a_single_safe_segment(self, segment: str) -> None:
        cleaned = sanitize_segment(segment)
        assert cleaned
        assert cleaned not in (".", "..")
        assert not any(ch in cleaned for ch in '<>:"/\\|?*')
        assert not any(ord(ch) < 32 for ch in cleaned)
        assert not cleaned.endswith((".", " "))

    @PROPERTY_SETTINGS
    @given(segment=st.text(max_size=40))
    def test_is_idempotent(self, segment: str) -> None:
        once = sanitize_segment(segment)
        assert sanitize_segment(once) == once
