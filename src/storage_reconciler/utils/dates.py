"""Timestamp helpers for object lock and conditional copy dates."""

from __future__ import annotations

from datetime import datetime, timezone


def to_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime; a naive value is taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_rfc3339(value: str | datetime) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the text is not a timestamp
    """
    if isinstance(value, datetime):
        return to_utc(value)  # type: ignore[return-value]
    return to_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))  # type: ignore[return-value]
