"""Utility functions for time handling.

All timestamps should be UTC and timezone-aware. Persist UTC timestamps as
ISO-8601 strings with timezone offsets (e.g., "+00:00") via to_iso().

Controllers never call ``datetime.now()`` or ``time.sleep()`` directly; they
receive a :class:`Clock` so that tests can drive time by hand.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo


class Clock:
    """Wall-clock source used by the scheduler and the controllers."""

    def now(self) -> datetime:
        """Return current UTC time as an aware datetime."""
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        """Block the calling thread for ``seconds``."""
        if seconds > 0:
            time.sleep(seconds)


SYSTEM_CLOCK = Clock()


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def iso_now(*, timespec: str | None = None) -> str:
    """Return current UTC time as an ISO8601 string (timezone-aware)."""
    now = utc_now()
    if timespec:
        return now.isoformat(timespec=timespec)
    return now.isoformat()


def to_iso(dt: datetime | None) -> str | None:
    """Render an aware datetime as a UTC ISO string (None passes through)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def coerce_datetime(value: Any) -> datetime | None:
    """
    Coerce value to datetime, returning None on failure.

    Args:
        value: String or datetime to coerce

    Returns:
        Datetime in timezone.utc or None if invalid
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    else:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed


def get_zone(tz: str | ZoneInfo) -> ZoneInfo:
    """Return a ZoneInfo for an IANA name (ZoneInfo instances pass through)."""
    if isinstance(tz, ZoneInfo):
        return tz
    return ZoneInfo(tz)


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse ``"HH:MM"`` into ``(hour, minute)``, raising ValueError when malformed."""
    try:
        hour_text, minute_text = value.strip().split(":")
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    return hour, minute


def local_date(moment: datetime, tz: str | ZoneInfo) -> date:
    """Calendar date of ``moment`` as seen in ``tz``."""
    return moment.astimezone(get_zone(tz)).date()


def at_local_time(day: date, hour: int, minute: int, tz: str | ZoneInfo) -> datetime:
    """Aware UTC instant for a local wall-clock time on ``day`` in ``tz``."""
    local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=get_zone(tz))
    return local.astimezone(timezone.utc)


def next_local_time(after: datetime, hour: int, minute: int, tz: str | ZoneInfo) -> datetime:
    """
    Next occurrence of a local wall-clock time strictly after ``after``.

    Computed on calendar days in ``tz`` so the result stays on the same local
    time across DST changes.
    """
    day = local_date(after, tz)
    candidate = at_local_time(day, hour, minute, tz)
    while candidate <= after:
        day = day + timedelta(days=1)
        candidate = at_local_time(day, hour, minute, tz)
    return candidate
