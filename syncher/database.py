"""Database engine, session management and administration schema setup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.schema import CreateSchema

from syncher.exceptions import StoreUnavailable
from syncher.models import Base

if TYPE_CHECKING:
    from sqlalchemy.engine import URL

    from syncher.config import Settings

logger = logging.getLogger(__name__)


def supports_schemas(url: URL) -> bool:
    """Return whether the backend has real schemas (SQLite does not)."""
    return url.get_backend_name() != "sqlite"


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    The administration tables are declared without a schema; on backends with
    schemas they are translated into ``settings.db_syncher_schema``.

    Returns (engine, session_factory) tuple.
    """
    url = settings.database_url
    if url.get_backend_name() == "sqlite" and url.database:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    execution_options: dict[str, object] = {}
    if supports_schemas(url):
        execution_options["schema_translate_map"] = {None: settings.db_syncher_schema}
    engine = create_async_engine(
        url,
        echo=settings.debug,
        execution_options=execution_options,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def ensure_admin_schema(engine: AsyncEngine, schema: str) -> None:
    """Create the administration schema and tables when they do not exist yet.

    Raises StoreUnavailable when the database cannot be reached or prepared.
    """
    try:
        async with engine.begin() as conn:
            if supports_schemas(engine.url):
                await conn.execute(CreateSchema(schema, if_not_exists=True))
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as exc:
        logger.critical(
            "Failed to prepare administration schema %r: %s. "
            "Check the database connection settings and privileges.",
            schema,
            exc,
        )
        raise StoreUnavailable(f"Cannot prepare administration schema {schema!r}: {exc}") from exc
