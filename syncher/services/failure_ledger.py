"""Failure ledger: files whose last execution failed, retried on every run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from syncher.models.sync import FailedFile
from syncher.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class FailureLedger:
    """Durable set of failing paths, keyed by path. Every mutation is committed."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, path: str, error_code: str, error_message: str | None) -> None:
        """Register *path* as failing, or update the error of an existing entry."""
        result = await self._session.execute(select(FailedFile).where(FailedFile.file == path))
        record = result.scalar_one_or_none()
        now = now_utc()
        if record is None:
            self._session.add(
                FailedFile(
                    file=path,
                    status=error_code,
                    error_message=error_message,
                    created=now,
                    last_updated=now,
                )
            )
        else:
            record.status = error_code
            record.error_message = error_message
            record.last_updated = now
        await self._session.commit()
        logger.debug("registered failing file %s (%s)", path, error_code)

    async def remove(self, path: str) -> None:
        """Remove *path* from the ledger. No-op if not present."""
        result = await self._session.execute(delete(FailedFile).where(FailedFile.file == path))
        await self._session.commit()
        if result.rowcount:
            logger.debug("removed failing file %s", path)

    async def list_all(self) -> list[str]:
        """Return every failing path in registration order."""
        result = await self._session.execute(select(FailedFile.file).order_by(FailedFile.id))
        paths = list(result.scalars())
        logger.debug("%d failing %s", len(paths), "file" if len(paths) == 1 else "files")
        return paths

    async def list_records(self) -> list[FailedFile]:
        """Return every ledger record in registration order."""
        result = await self._session.execute(select(FailedFile).order_by(FailedFile.id))
        return list(result.scalars())
