"""Helpers for the HHMM time strings used by the schedule and RTT payloads."""
from __future__ import annotations

from datetime import date, datetime, time as dt_time, tzinfo

from trainpal.errors import ParseError


def parse_hhmm(value: str) -> dt_time:
    """Parse ``HHMM`` or ``HH:MM`` (trailing seconds digits are ignored)."""

    if value is None:
        raise ParseError("Missing time value")
    cleaned = value.strip().replace(":", "")
    if len(cleaned) < 4 or not cleaned[:4].isdigit():
        raise ParseError(f"Invalid time format: {value!r}")
    hour = int(cleaned[:2])
    minute = int(cleaned[2:4])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ParseError(f"Time out of range: {value!r}")
    return dt_time(hour=hour, minute=minute)


def at_time_on(day: date, value: str, tz: tzinfo) -> datetime:
    """Return the aware datetime for an HHMM string on ``day``."""

    return datetime.combine(day, parse_hhmm(value), tzinfo=tz)


def _minutes_of_day(value: dt_time) -> int:
    return value.hour * 60 + value.minute


def delay_minutes(scheduled: str | None, realtime: str | None) -> int:
    """Minutes between booked and realtime departure, never negative.

    Returns 0 when either side is missing. A realtime that wrapped past
    midnight relative to the booked time also counts as 0.
    """

    if not scheduled or not realtime:
        return 0
    diff = _minutes_of_day(parse_hhmm(realtime)) - _minutes_of_day(parse_hhmm(scheduled))
    return max(diff, 0)
