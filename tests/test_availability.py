"""Tests for the availability resolver and the booking slot check."""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import insert

from app.core.exceptions import ConflictException
from app.models.appointments import appointments
from app.schemas.schedules import BlockedSlotCreate, ScheduleCreate
from app.services.availability_service import AvailabilityService
from app.services.schedule_service import ScheduleService


async def _monday_window(db_session, doctor, start="09:00", end="11:00", slot=30) -> dict:
    return await ScheduleService(db_session).create_schedule(
        ScheduleCreate(
            doctor_id=doctor.id,
            day_of_week=1,
            start_time=start,
            end_time=end,
            slot_duration=slot,
        ),
        doctor,
    )


async def _book(db_session, doctor_id, when, duration=30, status="SCHEDULED") -> UUID:
    result = await db_session.execute(
        insert(appointments)
        .values(
            patient_id=uuid4(),
            doctor_id=UUID(doctor_id),
            appointment_date=when,
            duration=duration,
            status=status,
        )
        .returning(appointments.c.id)
    )
    await db_session.commit()
    return result.scalar_one()


@pytest.mark.asyncio
async def test_no_schedule_means_no_slots(db_session, doctor_id, monday_9am):
    service = AvailabilityService(db_session)
    assert await service.get_availability(UUID(doctor_id), monday_9am.date()) == []


@pytest.mark.asyncio
async def test_availability_marks_booked_and_blocked_slots(db_session, doctor, monday_9am):
    schedule = await _monday_window(db_session, doctor)
    await _book(db_session, doctor.id, monday_9am + timedelta(minutes=30))
    await _book(db_session, doctor.id, monday_9am, status="CANCELLED")
    await ScheduleService(db_session).add_blocked_slot(
        schedule["id"],
        BlockedSlotCreate(blocked_date=monday_9am.date(), start_time="10:00", end_time="10:30"),
        doctor,
    )

    slots = await AvailabilityService(db_session).get_availability(
        UUID(doctor.id), monday_9am.date()
    )

    assert slots == [
        {"time": "09:00", "available": True, "reason": None},
        {"time": "09:30", "available": False, "reason": "APPOINTMENT"},
        {"time": "10:00", "available": False, "reason": "BLOCKED"},
        {"time": "10:30", "available": True, "reason": None},
    ]


@pytest.mark.asyncio
async def test_availability_merges_windows_in_time_order(db_session, doctor, monday_9am):
    await _monday_window(db_session, doctor, start="14:00", end="15:00")
    await _monday_window(db_session, doctor, start="08:00", end="09:00")

    slots = await AvailabilityService(db_session).get_availability(
        UUID(doctor.id), monday_9am.date()
    )

    assert [slot["time"] for slot in slots] == ["08:00", "08:30", "14:00", "14:30"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("offset_days", "minutes", "duration", "code"),
    [
        (1, 0, 30, "NO_SCHEDULE"),
        (0, 105, 30, "OUT_OF_SCHEDULE"),
        (0, -30, 30, "OUT_OF_SCHEDULE"),
        (0, 15, 30, "GRID_MISALIGNED"),
        (0, 60, 30, "BLOCKED_SLOT"),
        (0, 0, 60, "OVERLAPPING_APPOINTMENT"),
    ],
)
async def test_check_slot_rejections(
    db_session, doctor, monday_9am, offset_days, minutes, duration, code
):
    schedule = await _monday_window(db_session, doctor)
    await _book(db_session, doctor.id, monday_9am + timedelta(minutes=30))
    await ScheduleService(db_session).add_blocked_slot(
        schedule["id"],
        BlockedSlotCreate(blocked_date=monday_9am.date(), start_time="10:00", end_time="10:30"),
        doctor,
    )

    start = monday_9am + timedelta(days=offset_days, minutes=minutes)
    with pytest.raises(ConflictException) as exc:
        await AvailabilityService(db_session).check_slot(UUID(doctor.id), start, duration)
    assert exc.value.code == code


@pytest.mark.asyncio
async def test_check_slot_returns_hosting_window(db_session, doctor, monday_9am):
    schedule = await _monday_window(db_session, doctor)

    window = await AvailabilityService(db_session).check_slot(
        UUID(doctor.id), monday_9am + timedelta(minutes=90), 30
    )

    assert window["id"] == schedule["id"]


@pytest.mark.asyncio
async def test_check_slot_ignores_excluded_appointment(db_session, doctor, monday_9am):
    await _monday_window(db_session, doctor)
    booked = await _book(db_session, doctor.id, monday_9am)

    service = AvailabilityService(db_session)
    with pytest.raises(ConflictException):
        await service.check_slot(UUID(doctor.id), monday_9am, 30)
    await service.check_slot(UUID(doctor.id), monday_9am, 30, exclude_appointment_id=booked)


@pytest.mark.asyncio
async def test_find_next_slot_skips_taken_and_past_slots(db_session, doctor, monday_9am):
    await _monday_window(db_session, doctor)
    await _book(db_session, doctor.id, monday_9am + timedelta(minutes=30))

    found = await AvailabilityService(db_session).find_next_slot(
        UUID(doctor.id), monday_9am + timedelta(minutes=1), 30, search_days=0
    )

    assert found == monday_9am + timedelta(minutes=60)


@pytest.mark.asyncio
async def test_find_next_slot_requires_room_for_duration(db_session, doctor, monday_9am):
    await _monday_window(db_session, doctor)
    await _book(db_session, doctor.id, monday_9am + timedelta(minutes=30))

    found = await AvailabilityService(db_session).find_next_slot(
        UUID(doctor.id), monday_9am, 60, search_days=0
    )

    # 09:00 would run into the 09:30 booking
    assert found == monday_9am + timedelta(minutes=60)


@pytest.mark.asyncio
async def test_find_next_slot_searches_following_weeks(db_session, doctor, monday_9am):
    await _monday_window(db_session, doctor, end="10:00")
    await _book(db_session, doctor.id, monday_9am)
    await _book(db_session, doctor.id, monday_9am + timedelta(minutes=30))

    service = AvailabilityService(db_session)
    assert await service.find_next_slot(UUID(doctor.id), monday_9am, 30, search_days=6) is None
    assert await service.find_next_slot(
        UUID(doctor.id), monday_9am, 30, search_days=7
    ) == monday_9am + timedelta(days=7)
