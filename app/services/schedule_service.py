"""Schedule store: weekly availability windows and blocked slots."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.core.policies import Actor, ensure_doctor_scope
from app.models.schedules import blocked_slots, schedules
from app.schemas.schedules import BlockedSlotCreate, ScheduleCreate, ScheduleUpdate
from app.utils.time_grid import day_of_week, normalize_row, overlaps, to_minutes

logger = structlog.get_logger(__name__)


def _validate_range(start_time: str, end_time: str) -> tuple[int, int]:
    start = to_minutes(start_time)
    end = to_minutes(end_time)
    if end <= start:
        raise ValidationException(
            "endTime must be greater than startTime",
            code="INVALID_TIME_RANGE",
            extra={"start_time": start_time, "end_time": end_time},
        )
    return start, end


class ScheduleService:
    """CRUD over doctors' recurring weekly windows."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def _ensure_no_overlap(
        self,
        doctor_id: UUID,
        weekday: int,
        start: int,
        end: int,
        exclude_id: UUID | None = None,
    ) -> None:
        conditions = [
            schedules.c.doctor_id == doctor_id,
            schedules.c.day_of_week == weekday,
            schedules.c.is_active.is_(True),
        ]
        if exclude_id is not None:
            conditions.append(schedules.c.id != exclude_id)

        result = await self.db.execute(select(schedules).where(and_(*conditions)))
        for other in result.mappings().all():
            if overlaps(start, end, to_minutes(other["start_time"]), to_minutes(other["end_time"])):
                raise ConflictException(
                    "The schedule overlaps an existing one",
                    code="SCHEDULE_OVERLAP",
                    extra={"schedule_id": str(other["id"])},
                )

    async def _blocked_for(self, schedule_ids: list[UUID]) -> dict[UUID, list[dict[str, Any]]]:
        grouped: dict[UUID, list[dict[str, Any]]] = {sid: [] for sid in schedule_ids}
        if not schedule_ids:
            return grouped
        stmt = (
            select(blocked_slots)
            .where(blocked_slots.c.schedule_id.in_(schedule_ids))
            .order_by(blocked_slots.c.blocked_date, blocked_slots.c.start_time)
        )
        result = await self.db.execute(stmt)
        for row in result.mappings().all():
            grouped[row["schedule_id"]].append(normalize_row(row))
        return grouped

    async def _fetch(self, schedule_id: UUID, for_update: bool = False) -> dict[str, Any]:
        stmt = select(schedules).where(schedules.c.id == schedule_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Schedule not found", code="SCHEDULE_NOT_FOUND")
        return normalize_row(row)

    async def create_schedule(self, data: ScheduleCreate, actor: Actor) -> dict[str, Any]:
        """
        Create a weekly window.

        Raises:
            ForbiddenException: If a doctor creates windows for someone else
            ValidationException: On malformed times
            ConflictException: If it overlaps an active window of the same day
        """
        ensure_doctor_scope(actor, data.doctor_id)
        start, end = _validate_range(data.start_time, data.end_time)
        await self._ensure_no_overlap(data.doctor_id, data.day_of_week, start, end)

        stmt = (
            insert(schedules)
            .values(
                doctor_id=data.doctor_id,
                day_of_week=data.day_of_week,
                start_time=data.start_time,
                end_time=data.end_time,
                slot_duration=data.slot_duration,
                is_active=True,
            )
            .returning(schedules)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        schedule = normalize_row(result.mappings().one())
        schedule["blocked_slots"] = []
        logger.info(
            "schedule_created",
            schedule_id=str(schedule["id"]),
            doctor_id=str(data.doctor_id),
            day_of_week=data.day_of_week,
        )
        return schedule

    async def get_schedule(self, schedule_id: UUID) -> dict[str, Any]:
        """Get a schedule with its blocked slots."""
        schedule = await self._fetch(schedule_id)
        schedule["blocked_slots"] = (await self._blocked_for([schedule_id]))[schedule_id]
        return schedule

    async def list_doctor_schedules(self, doctor_id: UUID, actor: Actor) -> list[dict[str, Any]]:
        """All windows of a doctor (inactive included) with their blocked slots."""
        ensure_doctor_scope(actor, doctor_id)
        stmt = (
            select(schedules)
            .where(schedules.c.doctor_id == doctor_id)
            .order_by(schedules.c.day_of_week, schedules.c.start_time)
        )
        result = await self.db.execute(stmt)
        items = [normalize_row(row) for row in result.mappings().all()]
        blocked = await self._blocked_for([item["id"] for item in items])
        for item in items:
            item["blocked_slots"] = blocked[item["id"]]
        return items

    async def update_schedule(
        self,
        schedule_id: UUID,
        data: ScheduleUpdate,
        actor: Actor,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Update a window.

        Returns:
            Tuple of (previous state, updated state) for the rescheduler
        """
        current = await self._fetch(schedule_id, for_update=True)
        ensure_doctor_scope(actor, current["doctor_id"])

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        effective = {**current, **changes}
        start, end = _validate_range(effective["start_time"], effective["end_time"])
        if effective["is_active"]:
            await self._ensure_no_overlap(
                current["doctor_id"],
                effective["day_of_week"],
                start,
                end,
                exclude_id=schedule_id,
            )

        if not changes:
            return current, await self.get_schedule(schedule_id)

        stmt = (
            update(schedules)
            .where(schedules.c.id == schedule_id)
            .values(**changes)
            .returning(schedules)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        updated = normalize_row(result.mappings().one())
        updated["blocked_slots"] = (await self._blocked_for([schedule_id]))[schedule_id]
        logger.info("schedule_updated", schedule_id=str(schedule_id), changed=sorted(changes))
        return current, updated

    async def delete_schedule(self, schedule_id: UUID, actor: Actor) -> dict[str, Any]:
        """
        Deactivate a window; schedules are kept for history.

        Returns:
            The schedule as it was before deletion
        """
        current = await self._fetch(schedule_id, for_update=True)
        ensure_doctor_scope(actor, current["doctor_id"])

        await self.db.execute(
            update(schedules).where(schedules.c.id == schedule_id).values(is_active=False)
        )
        await self.db.commit()
        logger.info("schedule_deleted", schedule_id=str(schedule_id))
        return current

    async def add_blocked_slot(
        self,
        schedule_id: UUID,
        data: BlockedSlotCreate,
        actor: Actor,
    ) -> dict[str, Any]:
        """
        Block a time range of a window on one date.

        Raises:
            ValidationException: If the date is not on the window's weekday
        """
        schedule = await self._fetch(schedule_id)
        ensure_doctor_scope(actor, schedule["doctor_id"])
        _validate_range(data.start_time, data.end_time)
        if day_of_week(data.blocked_date) != schedule["day_of_week"]:
            raise ValidationException(
                "Blocked date does not fall on the schedule's day of week",
                code="BLOCKED_DATE_MISMATCH",
                extra={"day_of_week": schedule["day_of_week"]},
            )

        stmt = (
            insert(blocked_slots)
            .values(
                schedule_id=schedule_id,
                blocked_date=data.blocked_date,
                start_time=data.start_time,
                end_time=data.end_time,
                reason=data.reason,
            )
            .returning(blocked_slots)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return normalize_row(result.mappings().one())

    async def remove_blocked_slot(self, blocked_slot_id: UUID, actor: Actor) -> None:
        """Remove a blocked range."""
        stmt = (
            select(blocked_slots.c.id, schedules.c.doctor_id)
            .join(schedules, blocked_slots.c.schedule_id == schedules.c.id)
            .where(blocked_slots.c.id == blocked_slot_id)
        )
        row = (await self.db.execute(stmt)).first()
        if not row:
            raise NotFoundException("Blocked slot not found", code="BLOCKED_SLOT_NOT_FOUND")
        ensure_doctor_scope(actor, row.doctor_id)

        await self.db.execute(blocked_slots.delete().where(blocked_slots.c.id == blocked_slot_id))
        await self.db.commit()
