"""Queue ticket schemas."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class QueueStatus(str, Enum):
    """Queue ticket status enumeration."""

    WAITING = "WAITING"
    CALLED = "CALLED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class QueueJoinRequest(BaseModel):
    """Schema for joining a doctor's queue."""

    doctor_id: UUID
    patient_id: UUID
    appointment_id: UUID | None = None


class QueueJoinResponse(BaseModel):
    """Schema returned by a join, duplicate or not."""

    ticket_id: UUID
    ticket_number: int
    position: int
    estimated_wait_time: int
    status: QueueStatus
    duplicate: bool = False


class TicketPositionResponse(BaseModel):
    """Schema for a ticket position lookup."""

    ticket_id: UUID
    doctor_id: UUID
    ticket_number: int
    status: QueueStatus
    appointment_status: str | None = None
    position: int
    estimated_wait_time: int


class TicketTransitionResponse(BaseModel):
    """Schema for single-ticket transitions."""

    ticket_id: UUID
    ticket_number: int | None = None
    status: QueueStatus
    called_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    no_show_at: datetime | None = None


class QueueTicketView(BaseModel):
    """Ticket as listed in a doctor's current queue."""

    id: UUID
    ticket_number: int
    status: QueueStatus
    patient_id: UUID
    appointment_id: UUID | None = None
    queue_date: date
    created_at: datetime
    called_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    position: int | None = None
    estimated_wait_time: int | None = None
    waiting_minutes: int | None = None


class DoctorQueueResponse(BaseModel):
    """Schema for a doctor's queue of the day."""

    doctor_id: UUID
    date: date
    average_service_minutes: int
    size: int
    queue: list[QueueTicketView]


class CurrentPatientResponse(BaseModel):
    """Schema for the patient currently being attended."""

    doctor_id: UUID
    ticket: dict[str, Any]
    appointment: dict[str, Any] | None = None
    patient: dict[str, Any] | None = None
    medical_record: dict[str, Any] | None = None
