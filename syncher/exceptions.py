"""Application-level exception types.

Convention:
- Exceptions in this module are *fatal* for a sync run. ``syncher.main`` logs
  them and exits with a non-zero status before (startup errors) or at the
  point of (resolution errors) the failure; nothing is rolled back.
- Per-file application errors are never raised: the store collaborator returns
  them as ``StoreError`` values which end up in the failure ledger.
"""

from __future__ import annotations


class SyncherError(Exception):
    """Base class for all fatal migration syncher errors."""


class ConfigurationError(SyncherError):
    """Raised when the configuration file is unreadable or invalid."""


class StoreUnavailable(SyncherError):
    """Raised when the target database cannot be reached or prepared."""


class StorageUnavailable(SyncherError):
    """Raised when the last processed snapshot cannot be persisted."""


class RepositoryError(SyncherError):
    """Raised when a git operation on the local repository fails."""


class SnapshotNotFound(RepositoryError):
    """Raised when a snapshot identifier does not resolve to a commit."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(f"Snapshot {snapshot_id!r} cannot be resolved to a commit")
        self.snapshot_id = snapshot_id
