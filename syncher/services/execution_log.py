"""Execution log: append-only audit trail of file execution attempts."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from syncher.models.sync import FileExecutionLog
from syncher.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

STATUS_OK = "ok"


class ExecutionLog:
    """Appends one row per execution attempt; rows are never updated or deleted.

    The log is diagnostic only: a failing write is logged and swallowed so the
    sync run can complete.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, path: str, status: str, error_message: str | None = None) -> None:
        """Record one execution attempt of *path*."""
        try:
            self._session.add(
                FileExecutionLog(
                    created=now_utc(),
                    status=status,
                    file=path,
                    error_message=error_message or None,
                )
            )
            await self._session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to log execution of %s (status %s): %s", path, status, exc)
            await self._session.rollback()

    async def entries(self, path: str | None = None) -> list[FileExecutionLog]:
        """Return log rows in insertion order, optionally for one path."""
        stmt = select(FileExecutionLog).order_by(FileExecutionLog.id)
        if path is not None:
            stmt = stmt.where(FileExecutionLog.file == path)
        result = await self._session.execute(stmt)
        return list(result.scalars())
