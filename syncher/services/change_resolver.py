"""Change resolution: which files changed between two snapshots and which to execute."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from syncher.exceptions import SnapshotNotFound

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from syncher.services.git_service import GitService

logger = logging.getLogger(__name__)


class ChangeKind(StrEnum):
    """Type of a path-level change between two snapshots."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"
    COPIED = "copied"


@dataclass(frozen=True)
class ChangeEntry:
    """A single file-level difference between two snapshots.

    ``added`` carries only ``new_path``; ``modified`` and ``removed`` carry only
    ``old_path``; ``renamed`` and ``copied`` carry both.
    """

    kind: ChangeKind
    old_path: str | None = None
    new_path: str | None = None

    @property
    def path(self) -> str:
        """The path identifying this change (the new path when there is one)."""
        if self.new_path is not None:
            return self.new_path
        if self.old_path is not None:
            return self.old_path
        raise ValueError(f"{self.kind} change entry has no path")


class ChangeResolver:
    """Resolves snapshot diffs and reduces them to the files to execute.

    Args:
        git: The VCS collaborator.
        include_directories: Directory prefixes (relative to the repository root)
            that executed files must live in. Empty means every path passes.
    """

    def __init__(self, git: GitService, include_directories: Sequence[str] = ()) -> None:
        self._git = git
        self._include_directories = tuple(PurePosixPath(d) for d in include_directories)

    def resolve(self, from_id: str, to_id: str) -> list[ChangeEntry]:
        """Return the changes between two snapshots, without duplicates.

        Raises SnapshotNotFound if either id does not resolve to a commit.
        """
        for snapshot_id in (from_id, to_id):
            if not self._git.commit_exists(snapshot_id):
                raise SnapshotNotFound(snapshot_id)
        entries: list[ChangeEntry] = []
        seen: set[tuple[ChangeKind, str]] = set()
        for entry in self._git.diff(from_id, to_id):
            key = (entry.kind, entry.path)
            if key in seen:
                continue
            seen.add(key)
            entries.append(entry)
        logger.debug("%d changes between %s and %s", len(entries), from_id, to_id)
        return entries

    def is_included(self, path: str) -> bool:
        """Return whether *path* passes the include-directory filter."""
        if not self._include_directories:
            return True
        candidate = PurePosixPath(path)
        return any(candidate.is_relative_to(d) for d in self._include_directories)

    def select_applicable_paths(self, entries: Iterable[ChangeEntry]) -> list[str]:
        """Reduce changes to the ordered list of paths to execute.

        Removed files are never executed; the include filter is applied last.
        """
        paths: list[str] = []
        for entry in entries:
            if entry.kind in (ChangeKind.ADDED, ChangeKind.COPIED, ChangeKind.RENAMED):
                path = entry.new_path
            elif entry.kind is ChangeKind.MODIFIED:
                path = entry.old_path
            else:
                continue
            if path is not None and path not in paths and self.is_included(path):
                paths.append(path)
        return paths

    @staticmethod
    def affected_ledger_paths(entries: Iterable[ChangeEntry]) -> set[str]:
        """Return every path whose earlier failure is superseded by these changes."""
        affected: set[str] = set()
        for entry in entries:
            if entry.kind is ChangeKind.ADDED:
                candidates = (entry.new_path,)
            elif entry.kind in (ChangeKind.COPIED, ChangeKind.RENAMED):
                candidates = (entry.old_path, entry.new_path)
            else:
                candidates = (entry.old_path,)
            affected.update(p for p in candidates if p is not None)
        return affected
