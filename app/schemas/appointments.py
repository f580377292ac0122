"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ALLOWED_DURATIONS = (15, 30, 45, 60)


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    RESCHEDULED = "RESCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class HistoryAction(str, Enum):
    """Audit trail action enumeration."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"
    RESCHEDULE_ATTEMPT = "RESCHEDULE_ATTEMPT"


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    doctor_id: UUID
    specialty_id: UUID | None = None
    appointment_date: datetime
    duration: int = 30
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: int) -> int:
        """Duration must be one of the bookable lengths."""
        if v not in ALLOWED_DURATIONS:
            raise ValueError(f"duration must be one of {ALLOWED_DURATIONS}")
        return v


class AppointmentUpdate(BaseModel):
    """Schema for updating an existing appointment.

    ``status`` is accepted only so the service can reject it explicitly.
    """

    appointment_date: datetime | None = None
    duration: int | None = None
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    status: str | None = None


class AppointmentStatusUpdate(BaseModel):
    """Schema for changing appointment status."""

    status: str = Field(..., min_length=1)
    cancellation_reason: str | None = Field(None, max_length=500)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    specialty_id: UUID | None = None
    appointment_date: datetime
    duration: int
    reason: str | None = None
    notes: str | None = None
    status: AppointmentStatus
    is_rescheduled: bool = False
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: UUID | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AppointmentHistoryResponse(BaseModel):
    """Schema for an audit trail row."""

    id: UUID
    appointment_id: UUID
    action: HistoryAction
    previous_status: str | None = None
    new_status: str | None = None
    previous_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None
    changed_fields: list[str] = []
    changed_by: UUID | None = None
    changed_by_role: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    """Pagination block of list responses."""

    total: int
    pages: int
    page: int
    limit: int


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: str | None = None
    doctor_id: UUID | None = None
    specialty_id: UUID | None = None
    patient_id: UUID | None = None
    patient_name: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    page: int = 1
    limit: int = 20
    order_by: str = "appointment_date"
    order: str = "asc"

    @model_validator(mode="after")
    def clamp_paging(self) -> "AppointmentFilters":
        """Clamp page to >= 1 and limit to [1, 100]."""
        self.page = max(1, self.page)
        self.limit = min(100, max(1, self.limit))
        return self


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    data: list[AppointmentResponse]
    pagination: Pagination
    filters: dict[str, Any]


class AppointmentRangeResponse(BaseModel):
    """Schema for the unpaginated date-range listing."""

    filters: dict[str, Any]
    total: int
    items: list[AppointmentResponse]
