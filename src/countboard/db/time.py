# src/countboard/db/time.py
"""Time utilities for database models."""

from datetime import UTC, datetime

from sqlalchemy import types


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive values are taken to already be UTC, never host-local time.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UTCDateTime(types.TypeDecorator):
    """Timestamp column that only accepts and returns aware UTC datetimes.

    Uses a timezone-aware column where the dialect has one; on SQLite the
    value is stored as naive UTC and tagged as UTC again when loaded.
    """

    impl = types.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError(f"Refusing to store naive datetime {value.isoformat()}")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)
