"""File applier: executes one repository file against the target database."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

from syncher.services.execution_log import STATUS_OK
from syncher.services.script_runner import StoreError

if TYPE_CHECKING:
    from syncher.services.execution_log import ExecutionLog
    from syncher.services.git_service import GitService
    from syncher.services.script_runner import ScriptRunner

logger = logging.getLogger(__name__)

_UTF8_BOM = b"\xef\xbb\xbf"

# Error code for files that cannot be read from the repository or decoded.
IO_ERROR_CODE = "IOERR"


@dataclass(frozen=True)
class ApplyOutcome:
    """Result of executing one file."""

    path: str
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FileApplier:
    """Reads a file at a snapshot and submits it as one script.

    Every call writes exactly one execution log row. Failures are classified,
    never raised, and never retried here.
    """

    def __init__(self, git: GitService, runner: ScriptRunner, execution_log: ExecutionLog) -> None:
        self._git = git
        self._runner = runner
        self._execution_log = execution_log

    def _read(self, path: str, snapshot: str) -> str | StoreError:
        try:
            content = self._git.read_file_at_commit(snapshot, path)
        except subprocess.CalledProcessError as exc:
            return StoreError(IO_ERROR_CODE, f"Cannot read {path} at {snapshot}: {exc.stderr}")
        if content is None:
            return StoreError(IO_ERROR_CODE, f"File {path} does not exist at {snapshot}")
        if content.startswith(_UTF8_BOM):
            content = content[len(_UTF8_BOM) :]
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as exc:
            return StoreError(IO_ERROR_CODE, f"File {path} is not valid UTF-8: {exc}")

    async def apply(self, path: str, snapshot: str) -> ApplyOutcome:
        """Execute *path* as it is at *snapshot* and record the outcome."""
        content = self._read(path, snapshot)
        error = content if isinstance(content, StoreError) else await self._runner.execute(content)

        if error is None:
            logger.info("%s - ok", path)
            await self._execution_log.append(path, STATUS_OK)
        else:
            logger.info("%s - not ok", path)
            logger.debug("%s failed with %s: %s", path, error.code, error.message)
            await self._execution_log.append(path, error.code, error.message)
        return ApplyOutcome(path, error)
