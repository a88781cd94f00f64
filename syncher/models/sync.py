"""Sync administration models: last processed commit, failed files, execution log."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from syncher.models.base import Base


class LastCommit(Base):
    """Single-row table holding the last commit processed into the database."""

    __tablename__ = "last_commit"

    pk: Mapped[bool] = mapped_column(Boolean, primary_key=True, default=True)
    commit_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (CheckConstraint("pk", name="ck_last_commit_single_row"),)


class FailedFile(Base):
    """A file whose last execution attempt failed (the failure ledger)."""

    __tablename__ = "failed_file"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class FileExecutionLog(Base):
    """Append-only record of every file execution attempt."""

    __tablename__ = "file_execution_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    file: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_file_execution_log_file", "file"),)
