"""Application-level exception types.

Convention:
- ``AuthError``: credentials were rejected, expired, or the user cancelled the
  login prompt. Recovered by interactive re-authentication; only surfaced to the
  user when that re-authentication itself fails.
- ``NetworkError``: transient transport failure. The client recovers from it
  with its reconnect loop and only reports a "disconnected" status.
- ``RemoteDataError``: the remote service answered with something we cannot
  use (application error, non-JSON body, unexpected shape, no Materials
  section). Treated as "no data for this course".
- ``LocalIOError``: writing, renaming, or deleting a single local file failed.
  The file is recorded as failed in the sync result and the pass continues.

None of these is fatal to the process.
"""

from __future__ import annotations


class WebeepSyncError(Exception):
    """Base class for all errors raised by the sync client."""


class AuthError(WebeepSyncError):
    """Raised when login is cancelled or the remote service rejects credentials."""


class NetworkError(WebeepSyncError):
    """Raised for transport-level failures that are expected to be transient."""


class RemoteDataError(WebeepSyncError):
    """Raised when a remote response is an application error or malformed."""


class LocalIOError(WebeepSyncError):
    """Raised when a local file operation fails for a single synced file."""
