"""Relocation of appointments orphaned by schedule changes."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus, HistoryAction
from app.services.appointment_service import snapshot, write_history
from app.services.availability_service import AvailabilityService
from app.services.notification_service import NotificationService
from app.utils.time_grid import (
    day_of_week,
    ensure_utc,
    minutes_of_day,
    normalize_row,
    to_minutes,
    utc_now,
)

logger = structlog.get_logger(__name__)

RELOCATABLE_STATES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)


def compute_lost_windows(
    old: dict[str, Any],
    new: dict[str, Any] | None,
) -> list[dict[str, Any]]:
    """
    Time ranges the old window covered and the new one no longer does.

    A deleted or deactivated window, or one moved to another day, loses the
    whole old range; otherwise a shrink from the front and/or the back yields
    up to two disjoint windows.

    Returns:
        ``[{"day_of_week", "start", "end"}]`` with ``HH:mm`` bounds
    """
    if not old.get("is_active", True):
        return []
    whole = [{"day_of_week": old["day_of_week"], "start": old["start_time"], "end": old["end_time"]}]
    if new is None or not new.get("is_active", True):
        return whole
    if new["day_of_week"] != old["day_of_week"]:
        return whole

    windows = []
    if to_minutes(new["start_time"]) > to_minutes(old["start_time"]):
        windows.append(
            {"day_of_week": old["day_of_week"], "start": old["start_time"], "end": new["start_time"]}
        )
    if to_minutes(new["end_time"]) < to_minutes(old["end_time"]):
        windows.append(
            {"day_of_week": old["day_of_week"], "start": new["end_time"], "end": old["end_time"]}
        )
    return windows


def _in_windows(start: datetime, windows: list[dict[str, Any]]) -> bool:
    weekday = day_of_week(start.date())
    minute = minutes_of_day(start)
    return any(
        w["day_of_week"] == weekday and to_minutes(w["start"]) <= minute < to_minutes(w["end"])
        for w in windows
    )


class ReschedulerService:
    """Moves SCHEDULED/CONFIRMED appointments out of lost schedule windows."""

    def __init__(self, db: AsyncSession, notifier: NotificationService | None = None):
        """Initialize service with database session and optional notifier."""
        self.db = db
        self.notifier = notifier
        self.availability = AvailabilityService(db)

    async def _candidates(
        self,
        doctor_id: UUID,
        from_date: datetime,
        horizon_days: int,
    ) -> list[dict[str, Any]]:
        from_date = ensure_utc(from_date)
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.doctor_id == doctor_id,
                    appointments.c.status.in_(RELOCATABLE_STATES),
                    appointments.c.appointment_date >= from_date,
                    appointments.c.appointment_date < from_date + timedelta(days=horizon_days),
                )
            )
            .order_by(appointments.c.appointment_date)
        )
        result = await self.db.execute(stmt)
        return [normalize_row(row) for row in result.mappings().all()]

    async def _relocate(self, appointment: dict[str, Any]) -> bool:
        """Move one appointment to the next free slot, or record the failed attempt."""
        # never relocate into the past
        not_before = max(appointment["appointment_date"], utc_now())
        new_start = await self.availability.find_next_slot(
            appointment["doctor_id"],
            not_before,
            appointment["duration"] or 30,
            settings.rescheduler_search_days,
            exclude_appointment_id=appointment["id"],
        )

        try:
            if new_start is None:
                await write_history(
                    self.db,
                    appointment["id"],
                    HistoryAction.RESCHEDULE_ATTEMPT,
                    previous_status=appointment["status"],
                    new_status=appointment["status"],
                    previous_data=snapshot(appointment, ("appointment_date",)),
                    new_data={},
                )
                await self.db.commit()
                logger.warning(
                    "reschedule_slot_not_found",
                    appointment_id=str(appointment["id"]),
                    doctor_id=str(appointment["doctor_id"]),
                    appointment_date=appointment["appointment_date"].isoformat(),
                )
                return False

            result = await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment["id"])
                .values(
                    appointment_date=new_start,
                    status=AppointmentStatus.RESCHEDULED.value,
                    is_rescheduled=True,
                    updated_at=utc_now(),
                )
                .returning(appointments)
            )
            moved = normalize_row(result.mappings().one())
            await write_history(
                self.db,
                appointment["id"],
                HistoryAction.RESCHEDULED,
                previous_status=appointment["status"],
                new_status=AppointmentStatus.RESCHEDULED.value,
                previous_data=snapshot(appointment, ("appointment_date",)),
                new_data=snapshot(moved, ("appointment_date",)),
                changed_fields=["appointment_date", "status"],
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment["id"]),
            previous_date=appointment["appointment_date"].isoformat(),
            new_date=new_start.isoformat(),
        )
        if self.notifier:
            await self.notifier.notify_rescheduled(appointment, moved)
        return True

    async def reschedule_appointments_in_windows(
        self,
        doctor_id: UUID,
        windows: list[dict[str, Any]],
        from_date: datetime | None = None,
        horizon_days: int | None = None,
    ) -> dict[str, int]:
        """
        Relocate appointments whose start falls inside any lost window.

        Returns:
            ``{"processed", "moved", "not_found_slot"}``
        """
        counts = {"processed": 0, "moved": 0, "not_found_slot": 0}
        if not windows:
            return counts

        candidates = await self._candidates(
            doctor_id,
            from_date or utc_now(),
            horizon_days or settings.rescheduler_horizon_days,
        )
        counts["processed"] = len(candidates)
        for appointment in candidates:
            if not _in_windows(appointment["appointment_date"], windows):
                continue
            if await self._relocate(appointment):
                counts["moved"] += 1
            else:
                counts["not_found_slot"] += 1

        logger.info("reschedule_windows_completed", doctor_id=str(doctor_id), **counts)
        return counts

    async def reschedule_out_of_schedule_appointments(
        self,
        doctor_id: UUID,
        from_date: datetime | None = None,
        horizon_days: int | None = None,
    ) -> dict[str, int]:
        """
        Re-validate every relocatable appointment against current schedules.

        Appointments that still fit inside an active window are skipped; the
        rest go through the same forward search as a window shrink.

        Returns:
            ``{"processed", "moved", "not_found_slot", "skipped"}``
        """
        candidates = await self._candidates(
            doctor_id,
            from_date or utc_now(),
            horizon_days or settings.rescheduler_horizon_days,
        )
        counts = {"processed": len(candidates), "moved": 0, "not_found_slot": 0, "skipped": 0}

        for appointment in candidates:
            start = appointment["appointment_date"]
            slot_start = minutes_of_day(start)
            slot_end = slot_start + (appointment["duration"] or 30)
            windows = await self.availability.active_schedules(doctor_id, day_of_week(start.date()))
            fits = any(
                to_minutes(w["start_time"]) <= slot_start and slot_end <= to_minutes(w["end_time"])
                for w in windows
            )
            if fits:
                counts["skipped"] += 1
                continue
            if await self._relocate(appointment):
                counts["moved"] += 1
            else:
                counts["not_found_slot"] += 1

        logger.info("reschedule_sweep_completed", doctor_id=str(doctor_id), **counts)
        return counts


async def run_after_schedule_change(
    session_factory: async_sessionmaker[AsyncSession],
    old: dict[str, Any],
    new: dict[str, Any] | None,
    notifier: NotificationService | None = None,
) -> dict[str, int] | None:
    """
    Background entrypoint scheduled after a schedule update or delete.

    Failures are logged, never raised: the triggering request has already
    been answered.
    """
    windows = compute_lost_windows(old, new)
    if not windows:
        return None
    try:
        async with session_factory() as session:
            service = ReschedulerService(session, notifier)
            return await service.reschedule_appointments_in_windows(old["doctor_id"], windows)
    except Exception as e:
        logger.error(
            "reschedule_run_failed",
            doctor_id=str(old["doctor_id"]),
            schedule_id=str(old.get("id")),
            error=str(e),
            exc_info=True,
        )
        return None
