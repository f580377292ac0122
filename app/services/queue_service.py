"""Same-day FIFO queue per doctor with position and wait estimates."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import ConflictException, NotFoundException
from app.core.policies import Actor, ensure_doctor_scope
from app.models.appointments import appointments
from app.models.queue_tickets import queue_tickets
from app.schemas.appointments import AppointmentStatus, HistoryAction
from app.schemas.queue import QueueJoinRequest, QueueStatus
from app.services.appointment_service import AppointmentService, as_uuid, write_history
from app.services.user_directory import UserDirectoryClient
from app.utils.time_grid import normalize_row, utc_now

logger = structlog.get_logger(__name__)

OPEN_STATES = (
    QueueStatus.WAITING.value,
    QueueStatus.CALLED.value,
    QueueStatus.IN_PROGRESS.value,
)

JOIN_ATTEMPTS = 5


def _transition(ticket: dict[str, Any]) -> dict[str, Any]:
    return {
        "ticket_id": ticket["id"],
        "ticket_number": ticket["ticket_number"],
        "status": ticket["status"],
        "called_at": ticket.get("called_at"),
        "started_at": ticket.get("started_at"),
        "completed_at": ticket.get("completed_at"),
        "cancelled_at": ticket.get("cancelled_at"),
        "no_show_at": ticket.get("no_show_at"),
    }


def waiting_minutes(ticket: dict[str, Any], now: datetime) -> int:
    """Minutes a ticket waited, up to a reference point that depends on its status."""
    status = ticket["status"]
    if status == QueueStatus.WAITING.value:
        reference = now
    elif status == QueueStatus.CALLED.value:
        reference = ticket.get("called_at") or now
    elif status == QueueStatus.IN_PROGRESS.value:
        reference = ticket.get("started_at") or now
    else:
        reference = (
            ticket.get("started_at") or ticket.get("called_at") or ticket.get("completed_at") or now
        )
    return max(0, round((reference - ticket["created_at"]).total_seconds() / 60))


class QueueService:
    """Ticket lifecycle WAITING -> CALLED -> IN_PROGRESS -> COMPLETED."""

    def __init__(self, db: AsyncSession, directory: UserDirectoryClient | None = None):
        """Initialize service with database session."""
        self.db = db
        self.owners = AppointmentService(db, directory)

    async def _fetch(self, ticket_id: UUID, for_update: bool = False) -> dict[str, Any]:
        stmt = select(queue_tickets).where(queue_tickets.c.id == ticket_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self.db.execute(stmt)).mappings().first()
        if not row:
            raise NotFoundException("Ticket not found", code="TICKET_NOT_FOUND")
        return normalize_row(row)

    async def _ensure_access(self, actor: Actor, ticket: dict[str, Any]) -> None:
        ensure_doctor_scope(actor, ticket["doctor_id"])
        await self.owners.ensure_patient_owner(actor, ticket["patient_id"])

    def _day_filter(self, doctor_id: UUID, day: date) -> Any:
        return and_(queue_tickets.c.doctor_id == doctor_id, queue_tickets.c.queue_date == day)

    async def average_service_minutes(self, doctor_id: UUID) -> int:
        """
        Mean service time over the doctor's latest completed tickets.

        Returns:
            Rounded minutes, never below the configured floor; the configured
            default when there is no usable history
        """
        stmt = (
            select(queue_tickets.c.started_at, queue_tickets.c.completed_at)
            .where(
                and_(
                    queue_tickets.c.doctor_id == doctor_id,
                    queue_tickets.c.status == QueueStatus.COMPLETED.value,
                    queue_tickets.c.started_at.is_not(None),
                    queue_tickets.c.completed_at.is_not(None),
                )
            )
            .order_by(queue_tickets.c.completed_at.desc())
            .limit(settings.queue_history_window)
        )
        rows = [normalize_row(row) for row in (await self.db.execute(stmt)).mappings().all()]
        durations = [
            minutes
            for minutes in ((row["completed_at"] - row["started_at"]).total_seconds() / 60 for row in rows)
            if minutes > 0
        ]
        if not durations:
            return settings.queue_default_service_minutes
        average = sum(durations) / len(durations)
        return max(settings.queue_min_service_minutes, int(average + 0.5))

    async def _count_ahead(self, ticket: dict[str, Any]) -> int:
        stmt = select(func.count()).where(
            and_(
                self._day_filter(ticket["doctor_id"], ticket["queue_date"]),
                queue_tickets.c.status.in_(OPEN_STATES),
                queue_tickets.c.ticket_number < ticket["ticket_number"],
            )
        )
        return (await self.db.execute(stmt)).scalar() or 0

    async def _recompute_waiting(self, doctor_id: UUID, day: date, offset: int) -> None:
        """Renumber WAITING tickets: ``position = idx + 1 + offset``, ``eta = (idx + offset) * avg``."""
        average = await self.average_service_minutes(doctor_id)
        stmt = (
            select(queue_tickets.c.id)
            .where(
                and_(
                    self._day_filter(doctor_id, day),
                    queue_tickets.c.status == QueueStatus.WAITING.value,
                )
            )
            .order_by(queue_tickets.c.ticket_number)
        )
        for idx, ticket_id in enumerate((await self.db.execute(stmt)).scalars().all()):
            await self.db.execute(
                update(queue_tickets)
                .where(queue_tickets.c.id == ticket_id)
                .values(position=idx + 1 + offset, estimated_wait_time=(idx + offset) * average)
            )

    async def _confirm_appointment(self, appointment_id: UUID, actor: Actor) -> None:
        """Joining with an appointment confirms it, whatever its current status."""
        stmt = select(appointments.c.status).where(appointments.c.id == appointment_id)
        previous = (await self.db.execute(stmt)).scalar()
        if previous is None or previous == AppointmentStatus.CONFIRMED.value:
            return
        await self.db.execute(
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(status=AppointmentStatus.CONFIRMED.value, updated_at=utc_now())
        )
        await write_history(
            self.db,
            appointment_id,
            HistoryAction.STATUS_CHANGED,
            actor,
            previous_status=previous,
            new_status=AppointmentStatus.CONFIRMED.value,
            previous_data={"status": previous},
            new_data={"status": AppointmentStatus.CONFIRMED.value},
            changed_fields=["status"],
        )
        logger.info(
            "appointment_confirmed_by_queue",
            appointment_id=str(appointment_id),
            previous_status=previous,
        )

    async def _open_ticket_id(self, doctor_id: UUID, patient_id: UUID, day: date) -> UUID | None:
        stmt = select(queue_tickets.c.id).where(
            and_(
                self._day_filter(doctor_id, day),
                queue_tickets.c.patient_id == patient_id,
                queue_tickets.c.status.in_(OPEN_STATES),
            )
        )
        return (await self.db.execute(stmt)).scalar()

    async def _next_ticket_number(self, doctor_id: UUID, day: date) -> int:
        last = await self.db.execute(
            select(func.max(queue_tickets.c.ticket_number)).where(self._day_filter(doctor_id, day))
        )
        return (last.scalar() or 0) + 1

    async def _rejoin(
        self, ticket_id: UUID, data: QueueJoinRequest, actor: Actor
    ) -> dict[str, Any]:
        """Hand back the patient's open ticket, confirming the appointment if any."""
        if data.appointment_id is not None:
            try:
                await self._confirm_appointment(data.appointment_id, actor)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        position = await self.get_position(ticket_id, actor)
        logger.info("queue_join_duplicate", ticket_id=str(ticket_id), doctor_id=str(data.doctor_id))
        return {
            "ticket_id": position["ticket_id"],
            "ticket_number": position["ticket_number"],
            "position": position["position"],
            "estimated_wait_time": position["estimated_wait_time"],
            "status": position["status"],
            "duplicate": True,
        }

    async def join(self, data: QueueJoinRequest, actor: Actor) -> dict[str, Any]:
        """
        Join today's queue of a doctor.

        A patient already holding an open ticket gets it back with
        ``duplicate=True``; the linked appointment is confirmed either way.

        Raises:
            NotFoundException: APPOINTMENT_NOT_FOUND for an unknown appointment
        """
        await self.owners.ensure_patient_owner(actor, data.patient_id)
        if data.appointment_id is not None:
            exists = await self.db.execute(
                select(appointments.c.id).where(appointments.c.id == data.appointment_id)
            )
            if exists.scalar() is None:
                raise NotFoundException("Appointment not found", code="APPOINTMENT_NOT_FOUND")

        today = utc_now().date()
        # a lost insert race is retried from the duplicate check, so a
        # concurrent join by the same patient comes back as a duplicate
        for attempt in range(1, JOIN_ATTEMPTS + 1):
            existing = await self._open_ticket_id(data.doctor_id, data.patient_id, today)
            if existing is not None:
                return await self._rejoin(existing, data, actor)

            number = await self._next_ticket_number(data.doctor_id, today)
            try:
                result = await self.db.execute(
                    insert(queue_tickets)
                    .values(
                        doctor_id=data.doctor_id,
                        patient_id=data.patient_id,
                        appointment_id=data.appointment_id,
                        ticket_number=number,
                        queue_date=today,
                        status=QueueStatus.WAITING.value,
                        updated_by=as_uuid(actor.id),
                    )
                    .returning(queue_tickets)
                )
                ticket = normalize_row(result.mappings().one())
                break
            except IntegrityError:
                await self.db.rollback()
                logger.warning(
                    "queue_join_conflict",
                    doctor_id=str(data.doctor_id),
                    patient_id=str(data.patient_id),
                    ticket_number=number,
                    attempt=attempt,
                )
        else:
            raise ConflictException(
                "Could not allocate a ticket number, try again",
                code="QUEUE_BUSY",
                extra={"doctor_id": str(data.doctor_id)},
            )

        try:
            ahead = await self._count_ahead(ticket)
            eta = ahead * await self.average_service_minutes(data.doctor_id)
            await self.db.execute(
                update(queue_tickets)
                .where(queue_tickets.c.id == ticket["id"])
                .values(position=ahead + 1, estimated_wait_time=eta)
            )
            if data.appointment_id is not None:
                await self._confirm_appointment(data.appointment_id, actor)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "queue_ticket_created",
            ticket_id=str(ticket["id"]),
            doctor_id=str(data.doctor_id),
            ticket_number=number,
            position=ahead + 1,
        )
        return {
            "ticket_id": ticket["id"],
            "ticket_number": number,
            "position": ahead + 1,
            "estimated_wait_time": eta,
            "status": QueueStatus.WAITING.value,
            "duplicate": False,
        }

    async def call_next(self, doctor_id: UUID, actor: Actor) -> dict[str, Any]:
        """
        Call the lowest-numbered WAITING ticket of today.

        Raises:
            NotFoundException: EMPTY_QUEUE when nobody is waiting
        """
        ensure_doctor_scope(actor, doctor_id)
        today = utc_now().date()
        stmt = (
            select(queue_tickets)
            .where(
                and_(
                    self._day_filter(doctor_id, today),
                    queue_tickets.c.status == QueueStatus.WAITING.value,
                )
            )
            .order_by(queue_tickets.c.ticket_number)
            .limit(1)
            .with_for_update()
        )
        row = (await self.db.execute(stmt)).mappings().first()
        if not row:
            raise NotFoundException("No patients waiting", code="EMPTY_QUEUE")

        try:
            result = await self.db.execute(
                update(queue_tickets)
                .where(queue_tickets.c.id == row["id"])
                .values(
                    status=QueueStatus.CALLED.value,
                    called_at=utc_now(),
                    updated_by=as_uuid(actor.id),
                )
                .returning(queue_tickets)
            )
            called = normalize_row(result.mappings().one())
            # the called ticket still holds the first place
            await self._recompute_waiting(doctor_id, today, offset=1)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "queue_ticket_called",
            ticket_id=str(called["id"]),
            doctor_id=str(doctor_id),
            ticket_number=called["ticket_number"],
        )
        return _transition(called)

    async def _move(
        self,
        ticket_id: UUID,
        actor: Actor,
        target: QueueStatus,
        allowed_from: tuple[str, ...],
        **values: Any,
    ) -> dict[str, Any]:
        current = await self._fetch(ticket_id, for_update=True)
        await self._ensure_access(actor, current)
        if current["status"] not in allowed_from:
            raise ConflictException(
                f"Invalid ticket transition: {current['status']} -> {target.value}",
                code="INVALID_TICKET_TRANSITION",
                extra={"from": current["status"], "to": target.value},
            )

        result = await self.db.execute(
            update(queue_tickets)
            .where(queue_tickets.c.id == ticket_id)
            .values(status=target.value, updated_by=as_uuid(actor.id), **values)
            .returning(queue_tickets)
        )
        moved = normalize_row(result.mappings().one())
        logger.info(
            "queue_ticket_transition",
            ticket_id=str(ticket_id),
            previous_status=current["status"],
            new_status=target.value,
        )
        return moved

    async def _commit(self, ticket: dict[str, Any]) -> dict[str, Any]:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return _transition(ticket)

    async def call_ticket(self, ticket_id: UUID, actor: Actor) -> dict[str, Any]:
        """Call a specific ticket out of FIFO order."""
        ticket = await self._move(
            ticket_id,
            actor,
            QueueStatus.CALLED,
            (QueueStatus.WAITING.value, QueueStatus.CALLED.value),
            called_at=utc_now(),
        )
        return await self._commit(ticket)

    async def start_ticket(self, ticket_id: UUID, actor: Actor) -> dict[str, Any]:
        """Start attending a ticket."""
        ticket = await self._move(
            ticket_id,
            actor,
            QueueStatus.IN_PROGRESS,
            (QueueStatus.WAITING.value, QueueStatus.CALLED.value),
            started_at=utc_now(),
        )
        return await self._commit(ticket)

    async def complete_ticket(self, ticket_id: UUID, actor: Actor) -> dict[str, Any]:
        """
        Finish attending a ticket.

        ``started_at`` is backfilled from ``called_at`` (or now) when the
        ticket was never started, then the remaining WAITING tickets move up.
        """
        current = await self._fetch(ticket_id)
        now = utc_now()
        try:
            ticket = await self._move(
                ticket_id,
                actor,
                QueueStatus.COMPLETED,
                OPEN_STATES,
                started_at=current["started_at"] or current["called_at"] or now,
                completed_at=now,
            )
            await self._recompute_waiting(ticket["doctor_id"], ticket["queue_date"], offset=0)
        except Exception:
            await self.db.rollback()
            raise
        return await self._commit(ticket)

    async def mark_no_show(self, ticket_id: UUID, actor: Actor) -> dict[str, Any]:
        """Mark an open ticket as not presented."""
        ticket = await self._move(
            ticket_id, actor, QueueStatus.NO_SHOW, OPEN_STATES, no_show_at=utc_now()
        )
        return await self._commit(ticket)

    async def cancel_ticket(self, ticket_id: UUID, actor: Actor) -> dict[str, Any]:
        """Leave the queue."""
        ticket = await self._move(
            ticket_id, actor, QueueStatus.CANCELLED, OPEN_STATES, cancelled_at=utc_now()
        )
        return await self._commit(ticket)

    async def get_position(self, ticket_id: UUID, actor: Actor) -> dict[str, Any]:
        """
        Recompute and persist a ticket's position and wait estimate.

        Returns:
            Ticket status, linked appointment status, position and ETA
        """
        ticket = await self._fetch(ticket_id)
        await self._ensure_access(actor, ticket)

        ahead = await self._count_ahead(ticket)
        average = await self.average_service_minutes(ticket["doctor_id"])
        position = ahead + 1 if ticket["status"] == QueueStatus.WAITING.value else 1
        eta = (position - 1) * average

        appointment_status = None
        if ticket["appointment_id"] is not None:
            appointment_status = (
                await self.db.execute(
                    select(appointments.c.status).where(
                        appointments.c.id == ticket["appointment_id"]
                    )
                )
            ).scalar()

        try:
            await self.db.execute(
                update(queue_tickets)
                .where(queue_tickets.c.id == ticket_id)
                .values(position=position, estimated_wait_time=eta)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return {
            "ticket_id": ticket["id"],
            "doctor_id": ticket["doctor_id"],
            "ticket_number": ticket["ticket_number"],
            "status": ticket["status"],
            "appointment_status": appointment_status,
            "position": position,
            "estimated_wait_time": eta,
        }

    async def get_doctor_current_queue(
        self,
        doctor_id: UUID,
        actor: Actor,
        day: date | None = None,
        include_finished: bool = False,
    ) -> dict[str, Any]:
        """A doctor's tickets of a day in ticket order, annotated with waiting minutes."""
        ensure_doctor_scope(actor, doctor_id)
        day = day or utc_now().date()

        conditions = [self._day_filter(doctor_id, day)]
        if not include_finished:
            conditions.append(queue_tickets.c.status.in_(OPEN_STATES))
        stmt = select(queue_tickets).where(and_(*conditions)).order_by(queue_tickets.c.ticket_number)
        tickets = [normalize_row(row) for row in (await self.db.execute(stmt)).mappings().all()]

        now = utc_now()
        for ticket in tickets:
            ticket["waiting_minutes"] = waiting_minutes(ticket, now)

        return {
            "doctor_id": doctor_id,
            "date": day,
            "average_service_minutes": await self.average_service_minutes(doctor_id),
            "size": len(tickets),
            "queue": tickets,
        }
