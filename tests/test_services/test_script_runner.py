"""Tests for the script runner."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest
from psycopg import pq
from sqlalchemy.engine import make_url

from syncher.exceptions import StoreUnavailable
from syncher.services.failure_ledger import FailureLedger
from syncher.services.script_runner import OPEN_TRANSACTION_CODE, ScriptRunner, StoreError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


class TestScriptRunnerExecute:
    async def test_multi_statement_script(self, script_runner: ScriptRunner) -> None:
        script = (
            "create table t (id integer primary key, name text);\n"
            "insert into t (name) values ('a');\n"
            "insert into t (name) values ('b');\n"
        )
        assert await script_runner.execute(script) is None
        assert await script_runner.execute("drop table t;") is None

    async def test_syntax_error_returns_store_error(self, script_runner: ScriptRunner) -> None:
        error = await script_runner.execute("this is not sql;")
        assert isinstance(error, StoreError)
        assert error.code == "SQLITE_ERROR"
        assert "syntax error" in error.message

    async def test_missing_object_reported(self, script_runner: ScriptRunner) -> None:
        error = await script_runner.execute("select * from no_such_table;")
        assert error is not None
        assert "no_such_table" in error.message

    async def test_blank_script_is_noop(self, script_runner: ScriptRunner) -> None:
        assert await script_runner.execute("") is None
        assert await script_runner.execute("  \n\t") is None

    async def test_failed_transaction_rolled_back(self, script_runner: ScriptRunner) -> None:
        script = "BEGIN;\ncreate table half_done (id integer);\nbogus statement;\n"
        error = await script_runner.execute(script)
        assert error is not None
        # The open transaction was rolled back: the table does not exist and
        # the connection accepts the next script.
        assert await script_runner.execute("create table half_done (id integer);") is None
        assert await script_runner.execute("drop table half_done;") is None

    async def test_open_transaction_reported_and_rolled_back(
        self, script_runner: ScriptRunner
    ) -> None:
        error = await script_runner.execute("BEGIN;\ncreate table left_open (id integer);\n")
        assert error == StoreError(OPEN_TRANSACTION_CODE, "script left a transaction open")
        assert await script_runner.execute("create table left_open (id integer);") is None

    async def test_open_transaction_does_not_block_admin_session(
        self, script_runner: ScriptRunner, db_session: AsyncSession
    ) -> None:
        script = "BEGIN;\ncreate table locker (id integer);\ninsert into locker values (1);\n"
        error = await script_runner.execute(script)
        assert error is not None
        assert error.code == OPEN_TRANSACTION_CODE
        ledger = FailureLedger(db_session)
        await ledger.upsert("a.sql", OPEN_TRANSACTION_CODE, "script left a transaction open")
        assert await ledger.list_all() == ["a.sql"]

    async def test_continues_after_error(self, script_runner: ScriptRunner) -> None:
        assert await script_runner.execute("bogus;") is not None
        assert await script_runner.execute("create table after_error (id integer);") is None

    async def test_rollback_without_transaction_is_harmless(
        self, script_runner: ScriptRunner
    ) -> None:
        await script_runner.rollback()
        assert await script_runner.execute("select 1;") is None


class TestScriptRunnerConnection:
    async def test_execute_requires_connection(self, db_engine: AsyncEngine) -> None:
        runner = ScriptRunner(db_engine)
        with pytest.raises(StoreUnavailable, match="not connected"):
            await runner.execute("select 1;")

    async def test_initial_sql_runs_on_connect(self, db_engine: AsyncEngine) -> None:
        runner = ScriptRunner(db_engine, initial_sql="create table initial_marker (id integer);")
        await runner.connect()
        try:
            error = await runner.execute("create table initial_marker (id integer);")
            assert error is not None
            assert "already exists" in error.message
        finally:
            await runner.execute("drop table if exists initial_marker;")
            await runner.close()

    async def test_failing_initial_sql_is_fatal(self, db_engine: AsyncEngine) -> None:
        runner = ScriptRunner(db_engine, initial_sql="not valid sql")
        with pytest.raises(StoreUnavailable, match="Initial SQL failed"):
            await runner.connect()

    async def test_close_is_idempotent(self, db_engine: AsyncEngine) -> None:
        runner = ScriptRunner(db_engine)
        await runner.connect()
        await runner.close()
        await runner.close()

    async def test_search_path_ignored_on_sqlite(
        self, db_engine: AsyncEngine, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="syncher.services.script_runner"):
            runner = ScriptRunner(db_engine, search_path="app, public")
        assert "search_path" in caplog.text
        await runner.connect()
        try:
            assert await runner.execute("select 1;") is None
        finally:
            await runner.close()


def _postgres_runner(driver: MagicMock, **kwargs: Any) -> ScriptRunner:
    """A runner on a PostgreSQL URL whose connection hands out *driver*."""
    conn = MagicMock()
    conn.execution_options = AsyncMock(return_value=conn)
    conn.get_raw_connection = AsyncMock(return_value=MagicMock(driver_connection=driver))
    conn.close = AsyncMock()
    engine = MagicMock()
    engine.url = make_url("postgresql+psycopg://syncher@db.example.com/inventory")
    engine.connect = AsyncMock(return_value=conn)
    return ScriptRunner(engine, **kwargs)


def _psycopg_driver(*execute_effects: object) -> MagicMock:
    driver = MagicMock()
    driver.execute = AsyncMock(side_effect=list(execute_effects) or None)
    driver.rollback = AsyncMock()
    driver.info.transaction_status = pq.TransactionStatus.IDLE
    return driver


class TestScriptRunnerPostgres:
    async def test_script_submitted_as_one_statement(self) -> None:
        driver = _psycopg_driver()
        runner = _postgres_runner(driver)
        await runner.connect()

        script = "create table a (id int);\ncreate index a_id on a (id);\n"
        assert await runner.execute(script) is None

        driver.execute.assert_awaited_once_with(script)
        driver.rollback.assert_not_awaited()

    async def test_sqlstate_becomes_error_code(self) -> None:
        driver = _psycopg_driver(psycopg.errors.SyntaxError('syntax error at or near "tabel"'))
        runner = _postgres_runner(driver)
        await runner.connect()

        error = await runner.execute("create tabel a (id int);")

        assert error == StoreError("42601", 'syntax error at or near "tabel"')
        driver.rollback.assert_awaited_once()

    async def test_error_without_sqlstate_uses_class_name(self) -> None:
        driver = _psycopg_driver(psycopg.OperationalError("server closed the connection"))
        runner = _postgres_runner(driver)
        await runner.connect()

        error = await runner.execute("select 1;")

        assert error is not None
        assert error.code == "OperationalError"
        driver.rollback.assert_awaited_once()

    async def test_search_path_issued_first(self) -> None:
        driver = _psycopg_driver()
        runner = _postgres_runner(driver, search_path="inventory, public")
        await runner.connect()

        assert await runner.execute("create table a (id int);") is None

        assert [c.args[0] for c in driver.execute.await_args_list] == [
            "set search_path = inventory, public",
            "create table a (id int);",
        ]

    async def test_open_transaction_rolled_back(self) -> None:
        driver = _psycopg_driver()
        runner = _postgres_runner(driver)
        await runner.connect()
        driver.info.transaction_status = pq.TransactionStatus.INTRANS

        error = await runner.execute("begin;\ncreate table a (id int);")

        assert error is not None
        assert error.code == OPEN_TRANSACTION_CODE
        driver.rollback.assert_awaited_once()

    async def test_failing_rollback_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        driver = _psycopg_driver(psycopg.errors.SyntaxError("syntax error"))
        driver.rollback.side_effect = psycopg.OperationalError("connection lost")
        runner = _postgres_runner(driver)
        await runner.connect()

        error = await runner.execute("bogus;")

        assert error is not None
        assert error.code == "42601"
        assert "failed to rollback" in caplog.text
