"""Datetime utilities with consistent timezone handling.

All datetimes handled by the sync job are timezone-aware. Values written to
the records table and into card descriptions are rendered in the configured
display timezone.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# Format used by the records table for CreatedAt / ClosedAt, e.g. "21/May/2019 13:49"
RECORD_TIME_FORMAT = "%d/%b/%Y %H:%M"
CLOCK_FORMAT = "%H:%M"

# Existing rows in the records table were written with this shift applied.
LEGACY_RECORD_OFFSET = timedelta(hours=3)


def now_utc() -> datetime:
    """Return current datetime in UTC timezone."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware, assuming UTC if naive.

    Args:
        dt: Datetime to check/convert, or None

    Returns:
        Timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt


def get_timezone(name: Optional[str]) -> tzinfo:
    """Resolve an IANA timezone name, falling back to UTC for empty names.

    Raises:
        ValueError: If the name is not a known timezone
    """
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the calendar API.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")
    return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))


def to_rfc3339(dt: datetime) -> str:
    """Render an aware datetime the way the calendar API expects it."""
    return ensure_aware(dt).isoformat()


def format_record_time(dt: datetime, tz: tzinfo) -> str:
    """Format a timestamp for the records table.

    The value is shifted by LEGACY_RECORD_OFFSET to stay consistent with rows
    already present in the table.
    """
    local = ensure_aware(dt).astimezone(tz) + LEGACY_RECORD_OFFSET
    return local.strftime(RECORD_TIME_FORMAT)


def format_local(dt: datetime, tz: tzinfo, fmt: str = RECORD_TIME_FORMAT) -> str:
    """Format a timestamp in the display timezone without any shift."""
    return ensure_aware(dt).astimezone(tz).strftime(fmt)


def day_window(now: datetime, tz: tzinfo, days: int = 1):
    """Return (start, end) covering `days` local days starting today."""
    local = ensure_aware(now).astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=days)
