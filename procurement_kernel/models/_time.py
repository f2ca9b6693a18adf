"""Timezone handling for columns read back from backends without tz support."""

from datetime import datetime, timezone


def as_aware(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime (SQLite returns naive values)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
