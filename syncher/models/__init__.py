"""SQLAlchemy ORM models for the migration syncher."""

from syncher.models.base import Base
from syncher.models.sync import FailedFile, FileExecutionLog, LastCommit

__all__ = [
    "Base",
    "FailedFile",
    "FileExecutionLog",
    "LastCommit",
]
