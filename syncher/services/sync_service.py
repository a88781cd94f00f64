"""Sync service: the run state machine that converges the database on the repository.

One run walks through these phases:

* **bootstrap** -- no commit has been processed yet. The database is assumed
  to reflect the repository already; the current commit is stored and nothing
  is executed.
* **detecting** -- the diff between the stored and the current commit is
  resolved and ledger entries of every touched path are dropped, since their
  old failure is superseded by the new content.
* **applying** -- the selected files are executed in diff order. Failures go
  to the failure ledger. The stored commit advances afterwards regardless of
  failures.
* **retrying** -- every path that was in the ledger before applying is
  executed again; successes leave the ledger.
* **done** -- the run failed if the ledger is not empty.

When the stored commit equals the current one, detecting and applying are
skipped and the run only retries.

Convergence relies solely on these blind retries across runs: there is no
dependency ordering, so a set of mutually dependent files may need several runs
(and is not guaranteed to converge in a bounded number of them).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from syncher.exceptions import RepositoryError

if TYPE_CHECKING:
    from syncher.services.change_resolver import ChangeEntry, ChangeResolver
    from syncher.services.failure_ledger import FailureLedger
    from syncher.services.file_applier import ApplyOutcome, FileApplier
    from syncher.services.git_service import GitService
    from syncher.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class RunPhase(StrEnum):
    """Phase of a sync run."""

    BOOTSTRAP = "bootstrap"
    DETECTING = "detecting"
    APPLYING = "applying"
    RETRYING = "retrying"
    DONE = "done"


class RunOutcome(StrEnum):
    """Final status of a sync run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunContext:
    """State of one sync run, passed through the phases."""

    prior_snapshot: str | None
    current_snapshot: str
    phase: RunPhase = RunPhase.DETECTING
    changes: list[ChangeEntry] = field(default_factory=list)
    selected_paths: list[str] = field(default_factory=list)
    retry_candidates: list[str] = field(default_factory=list)
    applied: list[ApplyOutcome] = field(default_factory=list)
    retried: list[ApplyOutcome] = field(default_factory=list)
    error_encountered: bool = False


@dataclass
class SyncResult:
    """What a sync run did and how it ended."""

    outcome: RunOutcome
    prior_snapshot: str | None
    current_snapshot: str
    applied: list[ApplyOutcome] = field(default_factory=list)
    retried: list[ApplyOutcome] = field(default_factory=list)
    remaining_failures: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.outcome is RunOutcome.SUCCEEDED else 1


class SyncOrchestrator:
    """Sequences one sync run over injected collaborators."""

    def __init__(
        self,
        *,
        git: GitService,
        snapshots: SnapshotStore,
        ledger: FailureLedger,
        resolver: ChangeResolver,
        applier: FileApplier,
    ) -> None:
        self._git = git
        self._snapshots = snapshots
        self._ledger = ledger
        self._resolver = resolver
        self._applier = applier

    async def run(self) -> SyncResult:
        """Perform one sync run.

        Raises RepositoryError (including SnapshotNotFound) and
        StorageUnavailable; per-file failures never raise.
        """
        prior = await self._snapshots.read()
        current = self._git.head_commit()
        if current is None:
            raise RepositoryError("The repository has no commits")
        ctx = RunContext(prior_snapshot=prior, current_snapshot=current)

        if prior is None:
            return await self._bootstrap(ctx)

        if prior == current:
            logger.info("Nothing changed at commit id: %s, just perform retries", current)
            ctx.retry_candidates = await self._ledger.list_all()
        else:
            logger.info("processing files between commit id: %s and: %s", prior, current)
            await self._detect(ctx, prior)
            ctx.retry_candidates = await self._ledger.list_all()
            await self._apply(ctx)
            await self._snapshots.write(current)

        await self._retry(ctx)
        return await self._finish(ctx)

    async def _bootstrap(self, ctx: RunContext) -> SyncResult:
        ctx.phase = RunPhase.BOOTSTRAP
        logger.info("setting initial commit id %s", ctx.current_snapshot)
        await self._snapshots.write(ctx.current_snapshot)
        ctx.phase = RunPhase.DONE
        return SyncResult(
            outcome=RunOutcome.SUCCEEDED,
            prior_snapshot=None,
            current_snapshot=ctx.current_snapshot,
        )

    async def _detect(self, ctx: RunContext, prior: str) -> None:
        ctx.phase = RunPhase.DETECTING
        ctx.changes = self._resolver.resolve(prior, ctx.current_snapshot)
        for path in sorted(self._resolver.affected_ledger_paths(ctx.changes)):
            await self._ledger.remove(path)
        ctx.selected_paths = self._resolver.select_applicable_paths(ctx.changes)
        logger.info(
            "%d changed files, %d selected for execution", len(ctx.changes), len(ctx.selected_paths)
        )

    async def _apply(self, ctx: RunContext) -> None:
        ctx.phase = RunPhase.APPLYING
        for path in ctx.selected_paths:
            outcome = await self._applier.apply(path, ctx.current_snapshot)
            ctx.applied.append(outcome)
            if outcome.error is not None:
                ctx.error_encountered = True
                await self._ledger.upsert(path, outcome.error.code, outcome.error.message)

    async def _retry(self, ctx: RunContext) -> None:
        ctx.phase = RunPhase.RETRYING
        if ctx.retry_candidates:
            logger.info("retrying %d previously failed files", len(ctx.retry_candidates))
        for path in ctx.retry_candidates:
            outcome = await self._applier.apply(path, ctx.current_snapshot)
            ctx.retried.append(outcome)
            if outcome.error is None:
                await self._ledger.remove(path)
            else:
                ctx.error_encountered = True
                await self._ledger.upsert(path, outcome.error.code, outcome.error.message)

    async def _finish(self, ctx: RunContext) -> SyncResult:
        ctx.phase = RunPhase.DONE
        remaining = await self._ledger.list_all()
        outcome = RunOutcome.FAILED if remaining else RunOutcome.SUCCEEDED
        return SyncResult(
            outcome=outcome,
            prior_snapshot=ctx.prior_snapshot,
            current_snapshot=ctx.current_snapshot,
            applied=ctx.applied,
            retried=ctx.retried,
            remaining_failures=remaining,
        )
