"""Availability resolver: bookable slots per doctor and day."""

from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException
from app.models.appointments import appointments
from app.models.schedules import blocked_slots, schedules
from app.schemas.appointments import AppointmentStatus
from app.utils.time_grid import (
    at_minutes,
    day_bounds,
    day_of_week,
    ensure_utc,
    generate_slots,
    minutes_of_day,
    normalize_row,
    overlaps,
    to_hhmm,
    to_minutes,
)

ACTIVE_STATES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.IN_PROGRESS.value,
    AppointmentStatus.RESCHEDULED.value,
)

SLOT_TAKEN = "APPOINTMENT"
SLOT_BLOCKED = "BLOCKED"


class AvailabilityService:
    """Combines weekly schedules, blocked ranges and bookings."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def active_schedules(self, doctor_id: UUID, weekday: int) -> list[dict[str, Any]]:
        """Active windows of a doctor on a day of week."""
        stmt = (
            select(schedules)
            .where(
                and_(
                    schedules.c.doctor_id == doctor_id,
                    schedules.c.day_of_week == weekday,
                    schedules.c.is_active.is_(True),
                )
            )
            .order_by(schedules.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [normalize_row(row) for row in result.mappings().all()]

    async def blocked_ranges(self, schedule_ids: list[UUID], day: date) -> list[tuple[int, int]]:
        """Blocked minute ranges attached to the given schedules on a date."""
        if not schedule_ids:
            return []
        stmt = select(blocked_slots.c.start_time, blocked_slots.c.end_time).where(
            and_(
                blocked_slots.c.schedule_id.in_(schedule_ids),
                blocked_slots.c.blocked_date == day,
            )
        )
        result = await self.db.execute(stmt)
        return [(to_minutes(row.start_time), to_minutes(row.end_time)) for row in result.all()]

    async def day_appointments(
        self,
        doctor_id: UUID,
        day: date,
        statuses: tuple[str, ...] | None = None,
        exclude_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """A doctor's appointments on a UTC day, cancelled ones excluded by default."""
        start, end = day_bounds(day)
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.appointment_date >= start,
            appointments.c.appointment_date < end,
        ]
        if statuses:
            conditions.append(appointments.c.status.in_(statuses))
        else:
            conditions.append(appointments.c.status != AppointmentStatus.CANCELLED.value)
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        result = await self.db.execute(select(appointments).where(and_(*conditions)))
        return [normalize_row(row) for row in result.mappings().all()]

    async def get_availability(self, doctor_id: UUID, day: date) -> list[dict[str, Any]]:
        """
        List every slot of a doctor's day.

        Returns:
            ``[{"time": "HH:mm", "available": bool, "reason": str | None}]``
            sorted by time; empty when no schedule covers that weekday
        """
        windows = await self.active_schedules(doctor_id, day_of_week(day))
        if not windows:
            return []

        booked = await self.day_appointments(doctor_id, day)
        taken = {to_hhmm(minutes_of_day(appt["appointment_date"])) for appt in booked}
        blocked = await self.blocked_ranges([w["id"] for w in windows], day)

        availability = []
        for window in windows:
            for slot in generate_slots(
                window["start_time"], window["end_time"], window["slot_duration"]
            ):
                slot_minutes = to_minutes(slot)
                if slot in taken:
                    availability.append({"time": slot, "available": False, "reason": SLOT_TAKEN})
                elif any(start <= slot_minutes < end for start, end in blocked):
                    availability.append({"time": slot, "available": False, "reason": SLOT_BLOCKED})
                else:
                    availability.append({"time": slot, "available": True, "reason": None})

        return sorted(availability, key=lambda s: s["time"])

    async def check_slot(
        self,
        doctor_id: UUID,
        start: datetime,
        duration: int,
        exclude_appointment_id: UUID | None = None,
    ) -> dict[str, Any]:
        """
        Full booking check of ``[start, start + duration)`` for a doctor.

        Returns:
            The schedule window that hosts the slot

        Raises:
            ConflictException: NO_SCHEDULE, OUT_OF_SCHEDULE, GRID_MISALIGNED,
                BLOCKED_SLOT or OVERLAPPING_APPOINTMENT
        """
        start = ensure_utc(start)
        day = start.date()
        windows = await self.active_schedules(doctor_id, day_of_week(day))
        if not windows:
            raise ConflictException(
                "The doctor has no schedule configured for that day",
                code="NO_SCHEDULE",
                extra={"doctor_id": str(doctor_id), "day_of_week": day_of_week(day)},
            )

        slot_start = minutes_of_day(start)
        slot_end = slot_start + duration
        window = next(
            (
                w
                for w in windows
                if to_minutes(w["start_time"]) <= slot_start
                and slot_end <= to_minutes(w["end_time"])
            ),
            None,
        )
        if window is None:
            raise ConflictException(
                "The requested time is outside the doctor's schedule",
                code="OUT_OF_SCHEDULE",
                extra={"time": to_hhmm(slot_start), "duration": duration},
            )

        offset = slot_start - to_minutes(window["start_time"])
        if offset % window["slot_duration"] != 0 or start.second or start.microsecond:
            raise ConflictException(
                "The requested time is not aligned to the schedule's slot grid",
                code="GRID_MISALIGNED",
                extra={
                    "time": to_hhmm(slot_start),
                    "slot_duration": window["slot_duration"],
                    "schedule_start": window["start_time"],
                },
            )

        for blocked_start, blocked_end in await self.blocked_ranges([w["id"] for w in windows], day):
            if overlaps(slot_start, slot_end, blocked_start, blocked_end):
                raise ConflictException(
                    "The requested time is blocked",
                    code="BLOCKED_SLOT",
                    extra={"blocked_start": to_hhmm(blocked_start), "blocked_end": to_hhmm(blocked_end)},
                )

        booked = await self.day_appointments(
            doctor_id, day, statuses=ACTIVE_STATES, exclude_id=exclude_appointment_id
        )
        for appt in booked:
            appt_start = minutes_of_day(appt["appointment_date"])
            if overlaps(slot_start, slot_end, appt_start, appt_start + appt["duration"]):
                raise ConflictException(
                    "The requested time overlaps an existing appointment",
                    code="OVERLAPPING_APPOINTMENT",
                    extra={"appointment_id": str(appt["id"])},
                )

        return window

    async def find_next_slot(
        self,
        doctor_id: UUID,
        not_before: datetime,
        duration: int,
        search_days: int,
        exclude_appointment_id: UUID | None = None,
    ) -> datetime | None:
        """
        First available slot at or after ``not_before`` within ``search_days``.

        A slot qualifies when the resolver reports it available and the full
        booking check accepts it for ``duration``.
        """
        not_before = ensure_utc(not_before)
        for offset in range(search_days + 1):
            day = not_before.date() + timedelta(days=offset)
            for slot in await self.get_availability(doctor_id, day):
                if not slot["available"]:
                    continue
                candidate = at_minutes(day, to_minutes(slot["time"]))
                if candidate < not_before:
                    continue
                try:
                    await self.check_slot(
                        doctor_id, candidate, duration, exclude_appointment_id=exclude_appointment_id
                    )
                except ConflictException:
                    continue
                return candidate
        return None
