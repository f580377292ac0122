"""Doctor-facing views combining the queue, appointments and medical records."""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.core.policies import Actor, ensure_doctor_scope
from app.models.appointments import appointments
from app.models.queue_tickets import queue_tickets
from app.schemas.appointments import AppointmentStatus
from app.schemas.queue import QueueStatus
from app.services.medical_record_client import MedicalRecordClient
from app.services.user_directory import UserDirectoryClient
from app.utils.time_grid import day_bounds, normalize_row, utc_now


class ClinicalWorkflowService:
    """Read-only views for the doctor's consultation screen."""

    def __init__(
        self,
        db: AsyncSession,
        directory: UserDirectoryClient,
        records: MedicalRecordClient,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.directory = directory
        self.records = records

    async def get_current_patient(self, doctor_id: UUID, actor: Actor) -> dict[str, Any]:
        """
        Patient being attended now: today's IN_PROGRESS ticket, else the first CALLED one.

        Raises:
            NotFoundException: NO_CURRENT_PATIENT when nobody is being attended
        """
        ensure_doctor_scope(actor, doctor_id)
        in_progress_first = case((queue_tickets.c.status == QueueStatus.IN_PROGRESS.value, 0), else_=1)
        stmt = (
            select(queue_tickets)
            .where(
                and_(
                    queue_tickets.c.doctor_id == doctor_id,
                    queue_tickets.c.queue_date == utc_now().date(),
                    queue_tickets.c.status.in_(
                        (QueueStatus.IN_PROGRESS.value, QueueStatus.CALLED.value)
                    ),
                )
            )
            .order_by(in_progress_first, queue_tickets.c.ticket_number)
            .limit(1)
        )
        row = (await self.db.execute(stmt)).mappings().first()
        if not row:
            raise NotFoundException("No patient is being attended", code="NO_CURRENT_PATIENT")
        ticket = normalize_row(row)

        appointment = None
        medical_record = None
        if ticket["appointment_id"] is not None:
            found = await self.db.execute(
                select(appointments).where(appointments.c.id == ticket["appointment_id"])
            )
            appointment_row = found.mappings().first()
            appointment = normalize_row(appointment_row) if appointment_row else None
            medical_record = await self.records.get_record_by_appointment_id(
                str(ticket["appointment_id"])
            )

        patient = await self.directory.get_patient_contact_by_patient_id(str(ticket["patient_id"]))
        return {
            "doctor_id": doctor_id,
            "ticket": {
                "id": str(ticket["id"]),
                "ticket_number": ticket["ticket_number"],
                "status": ticket["status"],
                "position": ticket["position"],
                "estimated_wait_time": ticket["estimated_wait_time"],
            },
            "appointment": appointment,
            "patient": patient.model_dump() if patient else None,
            "medical_record": medical_record,
        }

    async def get_confirmed_appointments(
        self,
        doctor_id: UUID,
        actor: Actor,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> dict[str, Any]:
        """CONFIRMED appointments from ``date_from`` (today by default), with patient contacts."""
        ensure_doctor_scope(actor, doctor_id)
        date_from = date_from or utc_now().date()
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.status == AppointmentStatus.CONFIRMED.value,
            appointments.c.appointment_date >= day_bounds(date_from)[0],
        ]
        if date_to:
            conditions.append(appointments.c.appointment_date < day_bounds(date_to)[1])

        stmt = select(appointments).where(and_(*conditions)).order_by(appointments.c.appointment_date)
        items = [normalize_row(row) for row in (await self.db.execute(stmt)).mappings().all()]
        for item in items:
            contact = await self.directory.get_patient_contact_by_patient_id(str(item["patient_id"]))
            item["patient_contact"] = contact.model_dump() if contact else None

        return {"doctor_id": doctor_id, "total": len(items), "items": items}

    async def get_doctor_history(
        self,
        doctor_id: UUID,
        actor: Actor,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Records authored by the doctor, from the medical records service."""
        ensure_doctor_scope(actor, doctor_id)
        data = await self.records.list_records_by_physician(str(doctor_id), page=page, limit=limit)
        return {"doctor_id": str(doctor_id), **data}
