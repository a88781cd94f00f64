"""Declarative base for the syncher administration tables."""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models.

    Tables are declared without a schema; ``syncher.database`` maps them into
    the configured administration schema on backends that support schemas.
    """
