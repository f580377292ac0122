"""Schedule and availability schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ScheduleCreate(BaseModel):
    """Schema for creating a weekly availability window."""

    doctor_id: UUID
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: str = Field(..., description="HH:mm")
    end_time: str = Field(..., description="HH:mm")
    slot_duration: int = Field(default=30, gt=0)


class ScheduleUpdate(BaseModel):
    """Schema for updating a weekly availability window."""

    day_of_week: int | None = Field(None, ge=0, le=6)
    start_time: str | None = None
    end_time: str | None = None
    slot_duration: int | None = Field(None, gt=0)
    is_active: bool | None = None


class BlockedSlotCreate(BaseModel):
    """Schema for blocking a time range on a specific date."""

    blocked_date: date
    start_time: str
    end_time: str
    reason: str | None = Field(None, max_length=500)


class BlockedSlotResponse(BaseModel):
    """Schema for blocked slot response."""

    id: UUID
    schedule_id: UUID
    blocked_date: date
    start_time: str
    end_time: str
    reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScheduleResponse(BaseModel):
    """Schema for schedule response."""

    id: UUID
    doctor_id: UUID
    day_of_week: int
    start_time: str
    end_time: str
    slot_duration: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    blocked_slots: list[BlockedSlotResponse] = []

    model_config = ConfigDict(from_attributes=True)


class AvailabilitySlot(BaseModel):
    """One bookable slot of a doctor's day."""

    time: str
    available: bool
    reason: str | None = None


class LostWindow(BaseModel):
    """A time range no longer covered by a doctor's schedule."""

    day_of_week: int
    start: str
    end: str


class ReschedulerResult(BaseModel):
    """Aggregate counts of a rescheduler run."""

    processed: int = 0
    moved: int = 0
    not_found_slot: int = 0
    skipped: int = 0
