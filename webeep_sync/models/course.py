"""Course and remote file models. Refetched on every listing, never persisted."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Course:
    """An enrolled course with its normalized display name."""

    id: int
    name: str


@dataclass(frozen=True)
class FileInfo:
    """A downloadable file under a course's Materials section.

    ``filepath`` is relative and starts with the owning module's name.
    """

    filename: str
    filepath: str
    filesize: int
    fileurl: str
    created_at: int | None
    modified_at: int

    @property
    def key(self) -> str:
        """Identity of the file inside its course."""
        return file_key(self.filepath, self.filename)


def file_key(filepath: str, filename: str) -> str:
    """Build the per-course identity used by the local file index."""
    return f"{filepath.strip('/')}/{filename}" if filepath.strip("/") else filename
