"""Datetime helpers shared across the engine."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

__all__ = [
    "ensure_aware",
    "parse_header_date",
    "utc_now",
]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_aware(value: datetime) -> datetime:
    """Return ``value`` with naive datetimes assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def parse_header_date(header_value: str | None) -> datetime | None:
    """Parse an RFC 2822 ``Date`` header, returning ``None`` when unusable."""
    if not header_value:
        return None
    try:
        return ensure_aware(parsedate_to_datetime(str(header_value)))
    except (TypeError, ValueError, IndexError):
        return None
