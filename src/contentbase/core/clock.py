"""Timestamp helpers."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime.

    Timestamp columns are declared without time zone, and asyncpg refuses
    aware datetimes for them, so UTC is stored without tzinfo.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
