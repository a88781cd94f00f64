"""Datetime helpers: timezone-aware timestamps for administration rows."""

from __future__ import annotations

from datetime import UTC, datetime

# Output format used in run reports: YYYY-MM-DD HH:MM:SS+TZ
REPORT_FORMAT = "%Y-%m-%d %H:%M:%S%z"


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_datetime(dt: datetime) -> str:
    """Format a datetime for run reports.

    Naive datetimes (SQLite drops the offset on round trip) are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.strftime(REPORT_FORMAT)
