"""Schedule, blocked slot and availability endpoints."""

from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.policies import Actor, ensure_doctor_scope
from app.dependencies import DatabaseSession, Notifier, SessionFactory, require
from app.schemas.schedules import (
    AvailabilitySlot,
    BlockedSlotCreate,
    BlockedSlotResponse,
    ReschedulerResult,
    ScheduleCreate,
    ScheduleResponse,
    ScheduleUpdate,
)
from app.services.availability_service import AvailabilityService
from app.services.rescheduler_service import ReschedulerService, run_after_schedule_change
from app.services.schedule_service import ScheduleService

router = APIRouter()


@router.post(
    "/",
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create weekly schedule window",
)
async def create_schedule(
    data: ScheduleCreate,
    actor: Annotated[Actor, Depends(require("schedules:create"))],
    db: DatabaseSession,
) -> ScheduleResponse:
    """
    Create a recurring weekly availability window for a doctor.

    Raises:
        ConflictException: SCHEDULE_OVERLAP with an active window of the same day
    """
    return await ScheduleService(db).create_schedule(data, actor)


@router.get(
    "/available",
    response_model=list[AvailabilitySlot],
    summary="Get a doctor's slots for a date",
)
async def get_availability(
    _actor: Annotated[Actor, Depends(require("schedules:availability"))],
    db: DatabaseSession,
    doctor_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
) -> list[AvailabilitySlot]:
    """Every slot of the day marked available, BLOCKED or APPOINTMENT; empty without schedule."""
    return await AvailabilityService(db).get_availability(doctor_id, day)


@router.get(
    "/doctor/{doctor_id}",
    response_model=list[ScheduleResponse],
    summary="List a doctor's schedules",
)
async def list_doctor_schedules(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("schedules:read"))],
    db: DatabaseSession,
) -> list[ScheduleResponse]:
    """All windows of a doctor with their blocked slots."""
    return await ScheduleService(db).list_doctor_schedules(doctor_id, actor)


@router.post(
    "/doctor/{doctor_id}/reschedule",
    response_model=ReschedulerResult,
    summary="Relocate appointments outside the current schedule",
)
async def reschedule_out_of_schedule(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("schedules:reschedule"))],
    db: DatabaseSession,
    notifier: Notifier,
    from_date: datetime | None = Query(None),
    horizon_days: int | None = Query(None, ge=1, le=365),
) -> ReschedulerResult:
    """Re-validate the doctor's upcoming appointments and move those that no longer fit."""
    ensure_doctor_scope(actor, doctor_id)
    service = ReschedulerService(db, notifier)
    return await service.reschedule_out_of_schedule_appointments(doctor_id, from_date, horizon_days)


@router.delete(
    "/blocked-slots/{blocked_slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a blocked slot",
)
async def remove_blocked_slot(
    blocked_slot_id: UUID,
    actor: Annotated[Actor, Depends(require("schedules:update"))],
    db: DatabaseSession,
) -> None:
    """Make a blocked range bookable again."""
    await ScheduleService(db).remove_blocked_slot(blocked_slot_id, actor)


@router.get(
    "/{schedule_id}",
    response_model=ScheduleResponse,
    summary="Get schedule by ID",
)
async def get_schedule(
    schedule_id: UUID,
    actor: Annotated[Actor, Depends(require("schedules:read"))],
    db: DatabaseSession,
) -> ScheduleResponse:
    """Get a schedule window with its blocked slots."""
    schedule = await ScheduleService(db).get_schedule(schedule_id)
    ensure_doctor_scope(actor, schedule["doctor_id"])
    return schedule


@router.put(
    "/{schedule_id}",
    response_model=ScheduleResponse,
    summary="Update schedule window",
)
async def update_schedule(
    schedule_id: UUID,
    data: ScheduleUpdate,
    actor: Annotated[Actor, Depends(require("schedules:update"))],
    db: DatabaseSession,
    session_factory: SessionFactory,
    notifier: Notifier,
    background_tasks: BackgroundTasks,
) -> ScheduleResponse:
    """
    Update a window; appointments left outside it are relocated in the background.
    """
    old, new = await ScheduleService(db).update_schedule(schedule_id, data, actor)
    background_tasks.add_task(run_after_schedule_change, session_factory, old, new, notifier)
    return new


@router.delete(
    "/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete schedule window",
)
async def delete_schedule(
    schedule_id: UUID,
    actor: Annotated[Actor, Depends(require("schedules:delete"))],
    db: DatabaseSession,
    session_factory: SessionFactory,
    notifier: Notifier,
    background_tasks: BackgroundTasks,
) -> None:
    """Deactivate a window and relocate its future appointments in the background."""
    old = await ScheduleService(db).delete_schedule(schedule_id, actor)
    background_tasks.add_task(run_after_schedule_change, session_factory, old, None, notifier)


@router.post(
    "/{schedule_id}/blocked-slots",
    response_model=BlockedSlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Block a time range on a date",
)
async def add_blocked_slot(
    schedule_id: UUID,
    data: BlockedSlotCreate,
    actor: Annotated[Actor, Depends(require("schedules:update"))],
    db: DatabaseSession,
) -> BlockedSlotResponse:
    """Block part of a window on one specific date."""
    return await ScheduleService(db).add_blocked_slot(schedule_id, data, actor)
