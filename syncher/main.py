"""Command line entry point: one sync run per invocation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from syncher.config import DEFAULT_CONFIG_FILE, load_settings, write_initial_config
from syncher.database import create_engine, ensure_admin_schema
from syncher.exceptions import SyncherError
from syncher.services.change_resolver import ChangeResolver
from syncher.services.datetime_service import format_datetime
from syncher.services.execution_log import ExecutionLog
from syncher.services.failure_ledger import FailureLedger
from syncher.services.file_applier import FileApplier
from syncher.services.git_service import GitService
from syncher.services.script_runner import ScriptRunner
from syncher.services.snapshot_store import SnapshotStore
from syncher.services.sync_service import RunOutcome, SyncOrchestrator, SyncResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from syncher.config import Settings
    from syncher.models import FailedFile

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="migration-syncher",
        description="Execute the files changed in a git repository into a database",
    )
    parser.add_argument(
        "config",
        nargs="?",
        default=DEFAULT_CONFIG_FILE,
        help=f"Configuration file (default: {DEFAULT_CONFIG_FILE}); created if missing",
    )
    return parser.parse_args(argv)


async def run_sync(settings: Settings) -> SyncResult:
    """Prepare the collaborators from *settings* and perform one sync run."""
    engine, session_factory = create_engine(settings)
    git = GitService.from_settings(settings)
    runner = ScriptRunner(
        engine,
        search_path=settings.db_search_path,
        initial_sql=settings.db_initial_sql,
    )
    try:
        await ensure_admin_schema(engine, settings.db_syncher_schema)
        git.prepare()
        await runner.connect()
        async with session_factory() as session:
            ledger = FailureLedger(session)
            orchestrator = SyncOrchestrator(
                git=git,
                snapshots=SnapshotStore(session),
                ledger=ledger,
                resolver=ChangeResolver(git, settings.include_directory_list),
                applier=FileApplier(git, runner, ExecutionLog(session)),
            )
            result = await orchestrator.run()
            if result.remaining_failures:
                _log_remaining_failures(await ledger.list_records())
            return result
    finally:
        await runner.close()
        git.close()
        await engine.dispose()


def _log_remaining_failures(records: list[FailedFile]) -> None:
    lines = [
        f"{r.file} [{r.status}] since {format_datetime(r.created)}: {r.error_message or ''}"
        for r in records
    ]
    logger.warning("Files still failing:\n%s", "\n".join(lines))


def main(argv: Sequence[str] | None = None) -> int:
    """Run one sync; return the process exit status."""
    args = _parse_args(argv)
    config_path = Path(args.config)
    _configure_logging(debug=False)
    logger.info("start migration syncher")

    if not config_path.exists():
        try:
            write_initial_config(config_path)
        except OSError as exc:
            logger.critical("Cannot create configuration file %s: %s", config_path, exc)
            return 1
        logger.info(
            "Please correct that configuration file and run migration-syncher "
            "with the configuration filename as argument"
        )
        logger.info("finish migration syncher")
        return 1

    try:
        settings = load_settings(config_path)
        _configure_logging(settings.debug)
        logger.info("configuration: %s", config_path.resolve())
        result = asyncio.run(run_sync(settings))
    except SyncherError as exc:
        logger.critical("%s", exc)
        logger.warning("finish migration syncher - not ok")
        return 1
    except Exception:
        logger.exception("Unexpected error during sync")
        logger.warning("finish migration syncher - not ok")
        return 1

    if result.outcome is RunOutcome.FAILED:
        logger.warning(
            "finish migration syncher - not ok\n%s", "\n".join(result.remaining_failures)
        )
        return result.exit_code
    logger.info("finish migration syncher - ok")
    return result.exit_code


def cli_entry() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
