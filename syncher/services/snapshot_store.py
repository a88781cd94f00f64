"""Snapshot store: the last commit processed into the database."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from syncher.exceptions import StorageUnavailable
from syncher.models.sync import LastCommit
from syncher.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Reads and replaces the single ``last_commit`` row."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def read(self) -> str | None:
        """Return the last processed commit id, or None before the first run."""
        result = await self._session.execute(select(LastCommit.commit_id))
        commit_id = result.scalar_one_or_none()
        logger.debug("last processed commit: %s", commit_id)
        return commit_id

    async def write(self, commit_id: str) -> None:
        """Replace the last processed commit id and commit immediately.

        Raises StorageUnavailable if the value cannot be persisted.
        """
        try:
            row = await self._session.get(LastCommit, True)
            if row is None:
                self._session.add(LastCommit(pk=True, commit_id=commit_id, last_updated=now_utc()))
            else:
                row.commit_id = commit_id
                row.last_updated = now_utc()
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            msg = f"Cannot store last processed commit {commit_id}: {exc}"
            raise StorageUnavailable(msg) from exc
        logger.debug("stored last processed commit: %s", commit_id)
