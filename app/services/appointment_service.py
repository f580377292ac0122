"""Appointment lifecycle: booking rules, state machine and audit trail."""

import math
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from app.core.policies import Actor, Role, ensure_doctor_scope, ensure_patient_scope
from app.models.appointments import appointment_history, appointments
from app.schemas.appointments import (
    ALLOWED_DURATIONS,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStatus,
    AppointmentStatusUpdate,
    AppointmentUpdate,
    HistoryAction,
)
from app.services.availability_service import ACTIVE_STATES, AvailabilityService
from app.services.notification_service import NotificationService
from app.services.user_directory import UserDirectoryClient
from app.utils.time_grid import day_bounds, ensure_utc, normalize_row, overlaps, utc_now

logger = structlog.get_logger(__name__)

S = AppointmentStatus

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "SCHEDULED": frozenset({"CANCELLED", "COMPLETED", "RESCHEDULED", "CONFIRMED", "IN_PROGRESS"}),
    "CONFIRMED": frozenset({"CANCELLED", "COMPLETED", "RESCHEDULED", "IN_PROGRESS"}),
    "IN_PROGRESS": frozenset({"COMPLETED", "CANCELLED"}),
    "RESCHEDULED": frozenset({"CANCELLED", "COMPLETED", "CONFIRMED", "IN_PROGRESS"}),
    "COMPLETED": frozenset(),
    "CANCELLED": frozenset(),
}

CANCELLABLE_STATES = frozenset({S.SCHEDULED.value, S.CONFIRMED.value, S.RESCHEDULED.value})
TERMINAL_STATES = frozenset({S.COMPLETED.value, S.CANCELLED.value})

# Localized labels accepted wherever a status is given
STATUS_LABELS = {
    "PROGRAMADA": S.SCHEDULED.value,
    "CONFIRMADA": S.CONFIRMED.value,
    "EN_CURSO": S.IN_PROGRESS.value,
    "REAGENDADA": S.RESCHEDULED.value,
    "COMPLETADA": S.COMPLETED.value,
    "CANCELADA": S.CANCELLED.value,
    **{status.value: status.value for status in S},
}

SORTABLE_FIELDS = {
    "appointment_date": appointments.c.appointment_date,
    "created_at": appointments.c.created_at,
    "status": appointments.c.status,
    "doctor_id": appointments.c.doctor_id,
    "patient_id": appointments.c.patient_id,
}

SNAPSHOT_FIELDS = ("appointment_date", "duration", "status", "reason", "notes")


def map_status_label(label: str | None) -> str | None:
    """Map a canonical or localized status label to its canonical value."""
    if not label:
        return None
    return STATUS_LABELS.get(label.strip().upper())


def as_uuid(value: Any) -> UUID | None:
    """Coerce an identifier to UUID; identifiers that are not UUIDs map to None."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def snapshot(row: dict[str, Any], fields: tuple[str, ...] = SNAPSHOT_FIELDS) -> dict[str, Any]:
    """JSON-safe copy of selected appointment fields for the audit trail."""
    return {field: _jsonable(row.get(field)) for field in fields}


def _parse_day(value: str | None) -> date | None:
    """Calendar date of ``YYYY-MM-DD`` or an ISO timestamp; invalid input is ignored."""
    if not value:
        return None
    try:
        if len(value) <= 10:
            return date.fromisoformat(value)
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00"))).date()
    except ValueError:
        return None


async def write_history(
    db: AsyncSession,
    appointment_id: UUID,
    action: HistoryAction,
    actor: Actor | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
    previous_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
    changed_fields: list[str] | None = None,
) -> None:
    """Append one audit row inside the caller's transaction (no commit)."""
    await db.execute(
        insert(appointment_history).values(
            appointment_id=appointment_id,
            action=action.value,
            previous_status=previous_status,
            new_status=new_status,
            previous_data=previous_data,
            new_data=new_data,
            changed_fields=changed_fields or [],
            changed_by=as_uuid(actor.id) if actor else None,
            changed_by_role=actor.role.value if actor else "SYSTEM",
        )
    )


class AppointmentService:
    """Service for managing appointments."""

    def __init__(
        self,
        db: AsyncSession,
        directory: UserDirectoryClient | None = None,
        notifier: NotificationService | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.directory = directory
        self.notifier = notifier
        self.availability = AvailabilityService(db)

    async def _fetch(self, appointment_id: UUID, for_update: bool = False) -> dict[str, Any]:
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Appointment not found", code="APPOINTMENT_NOT_FOUND")
        return normalize_row(row)

    async def ensure_patient_owner(self, actor: Actor, patient_id: UUID | str) -> None:
        """
        Patients may only touch appointments of their own patient profile.

        The token carries the user id, so when it differs from the profile id
        the directory is asked for the profile's user.
        """
        if actor.role != Role.PATIENT or actor.id == str(patient_id):
            return
        contact = None
        if self.directory is not None:
            contact = await self.directory.get_patient_contact_by_patient_id(str(patient_id))
        ensure_patient_scope(actor, patient_id, contact.user_id if contact else None)

    async def _ensure_access(self, actor: Actor, appointment: dict[str, Any]) -> None:
        ensure_doctor_scope(actor, appointment["doctor_id"])
        await self.ensure_patient_owner(actor, appointment["patient_id"])

    async def _doctor_taken_at(
        self,
        doctor_id: UUID,
        start: datetime,
        exclude_id: UUID | None = None,
    ) -> UUID | None:
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.appointment_date == start,
            appointments.c.status.in_(ACTIVE_STATES),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)
        result = await self.db.execute(select(appointments.c.id).where(and_(*conditions)))
        return result.scalar()

    async def _patient_active(
        self,
        patient_id: UUID,
        exclude_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        conditions = [
            appointments.c.patient_id == patient_id,
            appointments.c.status.in_(ACTIVE_STATES),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)
        result = await self.db.execute(select(appointments).where(and_(*conditions)))
        return [normalize_row(row) for row in result.mappings().all()]

    def _ensure_no_patient_overlap(
        self,
        active: list[dict[str, Any]],
        start: datetime,
        duration: int,
    ) -> None:
        end = start + timedelta(minutes=duration)
        for other in active:
            other_start = other["appointment_date"]
            if other_start.date() != start.date():
                continue
            other_end = other_start + timedelta(minutes=other["duration"])
            if overlaps(start.timestamp(), end.timestamp(), other_start.timestamp(), other_end.timestamp()):
                raise ConflictException(
                    "The patient already has an appointment at that time",
                    code="PATIENT_OVERLAP",
                    extra={"appointment_id": str(other["id"])},
                )

    async def create_appointment(
        self,
        patient_id: UUID,
        data: AppointmentCreate,
        actor: Actor,
    ) -> dict[str, Any]:
        """
        Book a new appointment.

        Args:
            patient_id: Patient profile the appointment belongs to
            data: Appointment creation data
            actor: Authenticated caller

        Returns:
            Created appointment

        Raises:
            ValidationException: PAST_APPOINTMENT, DOCTOR_SPECIALTY_MISMATCH
            NotFoundException: PATIENT_NOT_FOUND
            ConflictException: PATIENT_INACTIVE, DOCTOR_OVERLAP, availability
                codes, PATIENT_ACTIVE_LIMIT, PATIENT_OVERLAP
            UpstreamUnavailableException: If the users service is unreachable
        """
        start = ensure_utc(data.appointment_date)
        if start <= utc_now():
            raise ValidationException(
                "Appointments cannot be scheduled in the past",
                code="PAST_APPOINTMENT",
            )

        patient = await self.directory.get_patient_contact_by_patient_id(
            str(patient_id), required=True
        )
        if patient is None:
            raise NotFoundException("Patient not found", code="PATIENT_NOT_FOUND")
        ensure_patient_scope(actor, patient_id, patient.user_id)
        if not patient.is_active:
            raise ConflictException(
                "The patient is not active",
                code="PATIENT_INACTIVE",
                extra={"status": patient.status},
            )

        if data.specialty_id and not await self.directory.doctor_has_specialty(
            str(data.doctor_id), str(data.specialty_id)
        ):
            raise ValidationException(
                "The doctor does not practice that specialty",
                code="DOCTOR_SPECIALTY_MISMATCH",
                extra={"doctor_id": str(data.doctor_id), "specialty_id": str(data.specialty_id)},
            )

        taken = await self._doctor_taken_at(data.doctor_id, start)
        if taken:
            raise ConflictException(
                "The doctor already has an appointment at that time",
                code="DOCTOR_OVERLAP",
                extra={"appointment_id": str(taken)},
            )

        await self.availability.check_slot(data.doctor_id, start, data.duration)

        active = await self._patient_active(patient_id)
        if len(active) >= settings.patient_active_appointment_limit:
            raise ConflictException(
                "The patient has reached the limit of active appointments",
                code="PATIENT_ACTIVE_LIMIT",
                extra={"limit": settings.patient_active_appointment_limit},
            )
        self._ensure_no_patient_overlap(active, start, data.duration)

        try:
            result = await self.db.execute(
                insert(appointments)
                .values(
                    patient_id=patient_id,
                    doctor_id=data.doctor_id,
                    specialty_id=data.specialty_id,
                    appointment_date=start,
                    duration=data.duration,
                    reason=data.reason,
                    notes=data.notes,
                    status=S.SCHEDULED.value,
                    is_rescheduled=False,
                )
                .returning(appointments)
            )
            created = normalize_row(result.mappings().one())
            await write_history(
                self.db,
                created["id"],
                HistoryAction.CREATED,
                actor,
                new_status=S.SCHEDULED.value,
                new_data=snapshot(created, ("patient_id", "doctor_id", *SNAPSHOT_FIELDS)),
                changed_fields=["patient_id", "doctor_id", *SNAPSHOT_FIELDS],
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_created",
            appointment_id=str(created["id"]),
            doctor_id=str(data.doctor_id),
            patient_id=str(patient_id),
            appointment_date=start.isoformat(),
        )
        if self.notifier:
            await self.notifier.notify_created(created)
        return created

    async def get_appointment(self, appointment_id: UUID, actor: Actor) -> dict[str, Any]:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the actor doesn't own it
        """
        appointment = await self._fetch(appointment_id)
        await self._ensure_access(actor, appointment)
        return appointment

    async def get_history(self, appointment_id: UUID, actor: Actor) -> list[dict[str, Any]]:
        """Audit trail of an appointment, oldest first."""
        await self.get_appointment(appointment_id, actor)
        stmt = (
            select(appointment_history)
            .where(appointment_history.c.appointment_id == appointment_id)
            .order_by(appointment_history.c.created_at)
        )
        result = await self.db.execute(stmt)
        return [normalize_row(row) for row in result.mappings().all()]

    async def list_appointments(
        self,
        filters: AppointmentFilters,
        actor: Actor | None = None,
    ) -> dict[str, Any]:
        """
        Search appointments with filtering, sorting and pagination.

        Doctors only ever see their own appointments.

        Returns:
            ``{"data", "pagination", "filters"}``
        """
        if actor is not None and actor.role == Role.DOCTOR:
            filters = filters.model_copy(update={"doctor_id": as_uuid(actor.id)})

        conditions = []
        status = map_status_label(filters.status)
        if status:
            conditions.append(appointments.c.status == status)
        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)
        if filters.specialty_id:
            conditions.append(appointments.c.specialty_id == filters.specialty_id)
        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)
        if filters.patient_name and self.directory is not None:
            ids = [
                pid
                for pid in (
                    as_uuid(value)
                    for value in await self.directory.resolve_patient_ids_by_name(
                        filters.patient_name
                    )
                )
                if pid
            ]
            if ids:
                conditions.append(appointments.c.patient_id.in_(ids))

        day_from = _parse_day(filters.date_from)
        day_to = _parse_day(filters.date_to)
        if day_from:
            conditions.append(appointments.c.appointment_date >= day_bounds(day_from)[0])
        if day_to:
            conditions.append(appointments.c.appointment_date < day_bounds(day_to)[1])

        order_by = filters.order_by if filters.order_by in SORTABLE_FIELDS else "appointment_date"
        order = "desc" if str(filters.order).lower() == "desc" else "asc"
        column = SORTABLE_FIELDS[order_by]

        where = and_(true(), *conditions)
        total = (
            await self.db.execute(select(func.count()).select_from(appointments).where(where))
        ).scalar() or 0

        stmt = (
            select(appointments)
            .where(where)
            .order_by(column.desc() if order == "desc" else column.asc())
            .limit(filters.limit)
            .offset((filters.page - 1) * filters.limit)
        )
        result = await self.db.execute(stmt)

        echoed = filters.model_dump(mode="json", exclude_none=True, exclude={"page", "limit"})
        echoed.update(order_by=order_by, order=order)
        return {
            "data": [normalize_row(row) for row in result.mappings().all()],
            "pagination": {
                "total": total,
                "pages": math.ceil(total / filters.limit),
                "page": filters.page,
                "limit": filters.limit,
            },
            "filters": echoed,
        }

    async def list_by_patient(
        self,
        patient_id: UUID,
        filters: AppointmentFilters,
        actor: Actor,
    ) -> dict[str, Any]:
        """Paginated appointments of one patient."""
        await self.ensure_patient_owner(actor, patient_id)
        filters = filters.model_copy(update={"patient_id": patient_id, "patient_name": None})
        return await self.list_appointments(filters)

    async def list_by_doctor(
        self,
        doctor_id: UUID,
        filters: AppointmentFilters,
        actor: Actor,
    ) -> dict[str, Any]:
        """Paginated appointments of one doctor."""
        ensure_doctor_scope(actor, doctor_id)
        filters = filters.model_copy(update={"doctor_id": doctor_id})
        return await self.list_appointments(filters)

    async def list_by_date_range(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        doctor_id: UUID | None = None,
        patient_id: UUID | None = None,
        status: str | None = None,
        actor: Actor | None = None,
    ) -> dict[str, Any]:
        """
        Unpaginated listing between two calendar days (both inclusive).

        Returns:
            ``{"filters", "total", "items"}`` ordered by date ascending
        """
        if actor is not None and actor.role == Role.DOCTOR:
            doctor_id = as_uuid(actor.id)

        conditions = []
        day_from = _parse_day(date_from)
        day_to = _parse_day(date_to)
        if day_from:
            conditions.append(appointments.c.appointment_date >= day_bounds(day_from)[0])
        if day_to:
            conditions.append(appointments.c.appointment_date < day_bounds(day_to)[1])
        if doctor_id:
            conditions.append(appointments.c.doctor_id == doctor_id)
        if patient_id:
            conditions.append(appointments.c.patient_id == patient_id)
        mapped = map_status_label(status)
        if mapped:
            conditions.append(appointments.c.status == mapped)

        stmt = select(appointments).order_by(appointments.c.appointment_date.asc())
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self.db.execute(stmt)
        items = [normalize_row(row) for row in result.mappings().all()]
        return {
            "filters": {
                "date_from": date_from,
                "date_to": date_to,
                "doctor_id": str(doctor_id) if doctor_id else None,
                "patient_id": str(patient_id) if patient_id else None,
                "status": status,
            },
            "total": len(items),
            "items": items,
        }

    async def list_upcoming(self, within_hours: int) -> list[dict[str, Any]]:
        """Active, not yet started appointments beginning within the next hours."""
        now = utc_now()
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.appointment_date >= now,
                    appointments.c.appointment_date < now + timedelta(hours=within_hours),
                    appointments.c.status.in_(tuple(CANCELLABLE_STATES)),
                )
            )
            .order_by(appointments.c.appointment_date)
        )
        result = await self.db.execute(stmt)
        return [normalize_row(row) for row in result.mappings().all()]

    async def send_upcoming_reminders(self, hours_before: int | None = None) -> int:
        """Queue a reminder for every appointment starting within ``hours_before``."""
        hours_before = hours_before or settings.reminder_hours_before
        upcoming = await self.list_upcoming(hours_before)
        if self.notifier:
            for appointment in upcoming:
                await self.notifier.notify_reminder(appointment, hours_before)
        logger.info("appointment_reminders_queued", count=len(upcoming), hours_before=hours_before)
        return len(upcoming)

    async def update_appointment(
        self,
        appointment_id: UUID,
        data: AppointmentUpdate,
        actor: Actor,
    ) -> dict[str, Any]:
        """
        Update date, duration, reason or notes.

        Date and duration changes re-run the booking checks against the
        effective values, ignoring the appointment itself.

        Raises:
            ValidationException: STATUS_NOT_ALLOWED_IN_UPDATE, INVALID_DURATION,
                PAST_APPOINTMENT
            ConflictException: APPOINTMENT_CLOSED or any booking conflict
        """
        if data.status is not None:
            raise ValidationException(
                "Status cannot be changed through update; use the status endpoint",
                code="STATUS_NOT_ALLOWED_IN_UPDATE",
            )

        try:
            current = await self._fetch(appointment_id, for_update=True)
            await self._ensure_access(actor, current)
            if current["status"] in TERMINAL_STATES:
                raise ConflictException(
                    "Closed appointments cannot be modified",
                    code="APPOINTMENT_CLOSED",
                    extra={"status": current["status"]},
                )

            requested = data.model_dump(exclude_unset=True, exclude={"status"})
            changes = {
                field: ensure_utc(value) if isinstance(value, datetime) else value
                for field, value in requested.items()
                if value is not None and value != current.get(field)
            }
            if "duration" in changes and changes["duration"] not in ALLOWED_DURATIONS:
                raise ValidationException(
                    f"duration must be one of {ALLOWED_DURATIONS}",
                    code="INVALID_DURATION",
                )

            if not changes:
                await self.db.rollback()
                return current

            if "appointment_date" in changes or "duration" in changes:
                start = changes.get("appointment_date", current["appointment_date"])
                duration = changes.get("duration", current["duration"])
                if "appointment_date" in changes:
                    if start <= utc_now():
                        raise ValidationException(
                            "Appointments cannot be scheduled in the past",
                            code="PAST_APPOINTMENT",
                        )
                    taken = await self._doctor_taken_at(
                        current["doctor_id"], start, exclude_id=appointment_id
                    )
                    if taken:
                        raise ConflictException(
                            "The doctor already has an appointment at that time",
                            code="DOCTOR_OVERLAP",
                            extra={"appointment_id": str(taken)},
                        )
                await self.availability.check_slot(
                    current["doctor_id"], start, duration, exclude_appointment_id=appointment_id
                )
                active = await self._patient_active(current["patient_id"], exclude_id=appointment_id)
                self._ensure_no_patient_overlap(active, start, duration)

            result = await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(**changes, updated_at=utc_now())
                .returning(appointments)
            )
            updated = normalize_row(result.mappings().one())
            await write_history(
                self.db,
                appointment_id,
                HistoryAction.UPDATED,
                actor,
                previous_status=current["status"],
                new_status=updated["status"],
                previous_data=snapshot(current),
                new_data=snapshot(updated),
                changed_fields=sorted(changes),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_updated",
            appointment_id=str(appointment_id),
            changed_fields=sorted(changes),
        )
        return updated

    async def change_status(
        self,
        appointment_id: UUID,
        data: AppointmentStatusUpdate,
        actor: Actor,
    ) -> dict[str, Any]:
        """
        Move an appointment along the state machine.

        Raises:
            ValidationException: INVALID_STATUS
            ForbiddenException: A patient setting COMPLETED or IN_PROGRESS
            ConflictException: INVALID_TRANSITION, INVALID_CANCELLATION
        """
        target = map_status_label(data.status)
        if target is None:
            raise ValidationException(
                f"Invalid status '{data.status}'",
                code="INVALID_STATUS",
                extra={"status": data.status},
            )
        if actor.role == Role.PATIENT and target in (S.COMPLETED.value, S.IN_PROGRESS.value):
            raise ForbiddenException(
                "Patients may not set that status",
                code="FORBIDDEN",
                extra={"status": target},
            )

        try:
            current = await self._fetch(appointment_id, for_update=True)
            await self._ensure_access(actor, current)

            previous = current["status"]
            if target not in VALID_TRANSITIONS.get(previous, frozenset()):
                raise ConflictException(
                    f"Invalid transition: {previous} -> {target}",
                    code="INVALID_TRANSITION",
                    extra={"from": previous, "to": target},
                )
            if target == S.CANCELLED.value and previous not in CANCELLABLE_STATES:
                raise ConflictException(
                    f"Appointments in {previous} cannot be cancelled",
                    code="INVALID_CANCELLATION",
                    extra={"status": previous},
                )

            now = utc_now()
            values: dict[str, Any] = {"status": target, "updated_at": now}
            if target == S.CANCELLED.value:
                values.update(
                    cancelled_at=now,
                    cancelled_by=as_uuid(actor.id),
                    cancellation_reason=data.cancellation_reason,
                )
            elif target == S.COMPLETED.value:
                values["completed_at"] = now

            result = await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(**values)
                .returning(appointments)
            )
            updated = normalize_row(result.mappings().one())
            await write_history(
                self.db,
                appointment_id,
                HistoryAction.STATUS_CHANGED,
                actor,
                previous_status=previous,
                new_status=target,
                previous_data={"status": previous},
                new_data={"status": target},
                changed_fields=["status"],
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            previous_status=previous,
            new_status=target,
            actor_role=actor.role.value,
        )
        if target == S.CANCELLED.value and self.notifier:
            await self.notifier.notify_cancelled(updated)
        return updated

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """
        Cancel an appointment; rows are never deleted.

        Raises:
            ConflictException: INVALID_CANCELLATION if not in a cancellable state
        """
        try:
            current = await self._fetch(appointment_id, for_update=True)
            await self._ensure_access(actor, current)
            if current["status"] not in CANCELLABLE_STATES:
                raise ConflictException(
                    f"Appointments in {current['status']} cannot be cancelled",
                    code="INVALID_CANCELLATION",
                    extra={"status": current["status"]},
                )

            now = utc_now()
            reason = reason or "Cancelled by request"
            result = await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(
                    status=S.CANCELLED.value,
                    cancelled_at=now,
                    cancelled_by=as_uuid(actor.id),
                    cancellation_reason=reason,
                    updated_at=now,
                )
                .returning(appointments)
            )
            cancelled = normalize_row(result.mappings().one())
            await write_history(
                self.db,
                appointment_id,
                HistoryAction.CANCELLED,
                actor,
                previous_status=current["status"],
                new_status=S.CANCELLED.value,
                previous_data={"status": current["status"]},
                new_data={"status": S.CANCELLED.value, "cancellation_reason": reason},
                changed_fields=["status", "cancelled_at", "cancellation_reason", "cancelled_by"],
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("appointment_cancelled", appointment_id=str(appointment_id))
        if self.notifier:
            await self.notifier.notify_cancelled(cancelled)
        return cancelled
