"""Script runner: executes file contents as opaque scripts on the target database.

The runner owns one dedicated AUTOCOMMIT connection and talks to the DBAPI
driver underneath SQLAlchemy, because multi-statement scripts are not
supported through prepared statements:

* SQLite (aiosqlite) runs the script with ``executescript``.
* PostgreSQL (psycopg) runs it through the simple query protocol, which is
  what a parameterless ``execute`` uses.

Driver errors are returned as ``StoreError`` values. A script that fails
after opening its own transaction (``BEGIN; ...``) leaves the connection in
an aborted transaction, so every failure is followed by a rollback before the
next file is executed. A script that succeeds but leaves its own transaction
open is rolled back as well and reported as an ``OPENTXN`` error: the shared
connection must be outside any transaction when the next file runs.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from syncher.exceptions import StoreUnavailable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)

# Error code for scripts that succeed but do not close the transaction they opened.
OPEN_TRANSACTION_CODE = "OPENTXN"


@dataclass(frozen=True)
class StoreError:
    """An error reported by the target database for one script."""

    code: str
    message: str


class _Dialect:
    """Driver-specific script execution."""

    errors: tuple[type[BaseException], ...] = ()

    async def run(self, driver: Any, script: str) -> None:
        raise NotImplementedError

    def in_transaction(self, driver: Any) -> bool:
        raise NotImplementedError

    def error_code(self, exc: BaseException) -> str:
        return type(exc).__name__


class _SqliteDialect(_Dialect):
    errors = (sqlite3.Error,)

    async def run(self, driver: Any, script: str) -> None:
        await driver.executescript(script)

    def in_transaction(self, driver: Any) -> bool:
        return bool(driver.in_transaction)

    def error_code(self, exc: BaseException) -> str:
        return getattr(exc, "sqlite_errorname", None) or type(exc).__name__


class _PostgresDialect(_Dialect):
    def __init__(self) -> None:
        import psycopg
        from psycopg import pq

        self.errors = (psycopg.Error,)
        self._open_states = (pq.TransactionStatus.INTRANS, pq.TransactionStatus.INERROR)

    async def run(self, driver: Any, script: str) -> None:
        await driver.execute(script)

    def in_transaction(self, driver: Any) -> bool:
        return driver.info.transaction_status in self._open_states

    def error_code(self, exc: BaseException) -> str:
        return getattr(exc, "sqlstate", None) or type(exc).__name__


def _dialect_for(backend_name: str) -> _Dialect:
    if backend_name == "sqlite":
        return _SqliteDialect()
    if backend_name == "postgresql":
        return _PostgresDialect()
    raise StoreUnavailable(f"Unsupported database backend: {backend_name}")


class ScriptRunner:
    """Submits scripts to the target database over one serial connection.

    Args:
        engine: Engine of the target database.
        search_path: PostgreSQL ``search_path`` set before every script.
        initial_sql: Statement executed once right after connecting.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        search_path: str | None = None,
        initial_sql: str = "",
    ) -> None:
        self._engine = engine
        self._dialect = _dialect_for(engine.url.get_backend_name())
        self._search_path = search_path
        self._initial_sql = initial_sql
        self._conn: AsyncConnection | None = None
        self._driver: Any = None
        if search_path is not None and engine.url.get_backend_name() != "postgresql":
            logger.warning("search_path %r ignored: not supported by this database", search_path)
            self._search_path = None

    async def connect(self) -> None:
        """Open the connection and run the initial statement.

        Raises StoreUnavailable when the database cannot be reached or the
        initial statement fails.
        """
        try:
            conn = await self._engine.connect()
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            raw = await conn.get_raw_connection()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"Cannot connect to {self._engine.url!r}: {exc}") from exc
        self._conn = conn
        self._driver = raw.driver_connection
        if self._initial_sql:
            logger.debug("execute initial sql: %s", self._initial_sql)
            error = await self.execute(self._initial_sql)
            if error is not None:
                await self.close()
                msg = f"Initial SQL failed ({error.code}): {error.message}"
                raise StoreUnavailable(msg)

    async def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._driver = None

    async def execute(self, content: str) -> StoreError | None:
        """Execute *content* as one script; return the error, or None on success."""
        if self._driver is None:
            raise StoreUnavailable("ScriptRunner is not connected")
        if not content.strip():
            logger.debug("empty script, nothing to execute")
            return None
        try:
            if self._search_path is not None:
                await self._dialect.run(self._driver, f"set search_path = {self._search_path}")
            await self._dialect.run(self._driver, content)
        except self._dialect.errors as exc:
            error = StoreError(code=self._dialect.error_code(exc), message=str(exc).strip())
            logger.debug("script failed: %s %s", error.code, error.message)
            await self.rollback()
            return error
        if self._dialect.in_transaction(self._driver):
            logger.debug("script left a transaction open, rolling back")
            await self.rollback()
            return StoreError(OPEN_TRANSACTION_CODE, "script left a transaction open")
        return None

    async def rollback(self) -> None:
        """Roll back an open transaction left behind by a script."""
        if self._driver is None:
            return
        try:
            await self._driver.rollback()
        except self._dialect.errors as exc:
            logger.error("failed to rollback after script error: %s", exc)
