"""Crash-safe file writes."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def temp_path_for(target: Path) -> Path:
    """Create an empty temporary file next to ``target`` and return its path.

    Living in the same directory keeps the final ``os.replace`` on one
    filesystem, which is what makes it atomic.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, raw_path = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
    os.close(fd)
    return Path(raw_path)


def write_text_atomic(path: Path, text: str, *, mode: int | None = None) -> None:
    """Replace ``path`` with ``text`` so readers see either the old or the new content."""
    tmp = temp_path_for(path)
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)
