"""Tests for the HH:mm time grid helpers."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from app.core.exceptions import ValidationException
from app.utils.time_grid import (
    at_minutes,
    day_bounds,
    day_of_week,
    ensure_utc,
    format_duration,
    generate_slots,
    minutes_of_day,
    overlaps,
    to_hhmm,
    to_minutes,
)


def test_to_minutes_parses_strict_hhmm():
    assert to_minutes("00:00") == 0
    assert to_minutes("09:30") == 570
    assert to_minutes("23:59") == 1439


@pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "0900", "ab:cd", "", None])
def test_to_minutes_rejects_malformed(value):
    with pytest.raises(ValidationException) as exc:
        to_minutes(value)
    assert exc.value.code == "INVALID_TIME_FORMAT"


def test_to_hhmm_pads():
    assert to_hhmm(0) == "00:00"
    assert to_hhmm(545) == "09:05"


def test_generate_slots_stops_when_slot_does_not_fit():
    assert generate_slots("09:00", "10:00", 30) == ["09:00", "09:30"]
    assert generate_slots("09:00", "10:10", 30) == ["09:00", "09:30"]
    assert generate_slots("09:00", "09:20", 30) == []


def test_generate_slots_validates_range_and_duration():
    with pytest.raises(ValidationException) as exc:
        generate_slots("10:00", "09:00", 30)
    assert exc.value.code == "INVALID_TIME_RANGE"

    with pytest.raises(ValidationException) as exc:
        generate_slots("09:00", "10:00", 0)
    assert exc.value.code == "INVALID_SLOT_DURATION"


def test_overlaps_is_half_open():
    assert overlaps(0, 30, 15, 45)
    assert not overlaps(0, 30, 30, 60)
    assert not overlaps(30, 60, 0, 30)


def test_day_of_week_starts_on_sunday():
    assert day_of_week(date(2026, 10, 18)) == 0  # Sunday
    assert day_of_week(date(2026, 10, 19)) == 1  # Monday
    assert day_of_week(date(2026, 10, 24)) == 6  # Saturday


def test_utc_helpers():
    naive = datetime(2026, 1, 5, 9, 30)
    assert ensure_utc(naive).tzinfo == UTC

    shifted = datetime(2026, 1, 5, 4, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert ensure_utc(shifted) == datetime(2026, 1, 5, 9, 30, tzinfo=UTC)
    assert minutes_of_day(shifted) == 570

    start, end = day_bounds(date(2026, 1, 5))
    assert start == datetime(2026, 1, 5, tzinfo=UTC)
    assert end - start == timedelta(days=1)
    assert at_minutes(date(2026, 1, 5), 570) == datetime(2026, 1, 5, 9, 30, tzinfo=UTC)


def test_format_duration():
    assert format_duration(45) == "45 min"
    assert format_duration(60) == "1 hora"
    assert format_duration(120) == "2 horas"
    assert format_duration(24 * 60) == "1 día"
    assert format_duration(None) == "30 min"
