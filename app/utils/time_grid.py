"""Time-grid helpers for `HH:mm` schedules and slot boundaries."""

import re
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from app.core.exceptions import ValidationException

_HHMM_RE = re.compile(r"^\d{2}:\d{2}$")


def to_minutes(hhmm: str) -> int:
    """
    Parse a strict ``HH:mm`` string into minutes since midnight.

    Raises:
        ValidationException: If the value is not ``HH:mm``
    """
    if not isinstance(hhmm, str) or not _HHMM_RE.match(hhmm):
        raise ValidationException(
            f"Invalid time format '{hhmm}', expected HH:mm",
            code="INVALID_TIME_FORMAT",
        )
    hours, minutes = (int(part) for part in hhmm.split(":"))
    if hours > 23 or minutes > 59:
        raise ValidationException(
            f"Invalid time format '{hhmm}', expected HH:mm",
            code="INVALID_TIME_FORMAT",
        )
    return hours * 60 + minutes


def to_hhmm(minutes: int) -> str:
    """Format minutes since midnight as zero-padded ``HH:mm``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def generate_slots(start_time: str, end_time: str, slot_duration: int) -> list[str]:
    """
    Generate slot start times for a window.

    A slot is emitted while ``cursor + slot_duration <= end``, so
    ``generate_slots("09:00", "10:00", 30) == ["09:00", "09:30"]``.
    """
    start = to_minutes(start_time)
    end = to_minutes(end_time)
    if end <= start:
        raise ValidationException(
            "endTime must be greater than startTime",
            code="INVALID_TIME_RANGE",
        )
    if slot_duration <= 0:
        raise ValidationException("slotDuration must be > 0", code="INVALID_SLOT_DURATION")

    slots = []
    cursor = start
    while cursor + slot_duration <= end:
        slots.append(to_hhmm(cursor))
        cursor += slot_duration
    return slots


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open interval overlap test."""
    return a_start < b_end and b_start < a_end


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the [start, next day start) UTC bounds of a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def day_of_week(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def minutes_of_day(value: datetime) -> int:
    """Minutes since UTC midnight for a timestamp."""
    value = ensure_utc(value)
    return value.hour * 60 + value.minute


def at_minutes(day: date, minutes: int) -> datetime:
    """Build the UTC timestamp for ``minutes`` past midnight of ``day``."""
    return datetime.combine(day, time.min, tzinfo=UTC) + timedelta(minutes=minutes)


def format_duration(minutes: int | None = 30) -> str:
    """Human readable duration used in notification bodies."""
    if not minutes or minutes <= 0:
        return "30 min"
    if minutes % (24 * 60) == 0:
        days = minutes // (24 * 60)
        return "1 día" if days == 1 else f"{days} días"
    if minutes % 60 == 0:
        hours = minutes // 60
        return "1 hora" if hours == 1 else f"{hours} horas"
    return f"{minutes} min"


def normalize_row(mapping: Any) -> dict[str, Any]:
    """Copy a result row into a dict with every timestamp made UTC-aware."""
    return {
        key: ensure_utc(value) if isinstance(value, datetime) else value
        for key, value in dict(mapping).items()
    }
