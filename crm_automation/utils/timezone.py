"""
Timezone utilities for the automation engine.

All persisted and compared instants are timezone-aware UTC datetimes.
Tenant-facing schedules can be interpreted in a named zone with pytz.
"""

from datetime import datetime, timezone
from typing import Optional, Union

import pytz


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Attach a timezone to a naive datetime.

    Args:
        value: Datetime that may be naive
        tz_name: Olson zone used for naive values (defaults to UTC)

    Returns:
        The same instant as an aware datetime; aware inputs are returned unchanged.
    """
    if value.tzinfo is not None:
        return value
    if not tz_name:
        return value.replace(tzinfo=timezone.utc)
    return pytz.timezone(tz_name).localize(value)


def to_zone(value: datetime, tz_name: str) -> datetime:
    """Convert an aware datetime to the given zone."""
    return ensure_aware(value).astimezone(pytz.timezone(tz_name))


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string written by to_dict(); None passes through.

    YAML loads unquoted timestamps as datetime objects, which are only made aware.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(value))
