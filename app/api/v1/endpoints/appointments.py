"""Appointment endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.core.policies import Actor
from app.dependencies import DatabaseSession, Directory, Notifier, require
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentHistoryResponse,
    AppointmentListResponse,
    AppointmentRangeResponse,
    AppointmentResponse,
    AppointmentStatusUpdate,
    AppointmentUpdate,
)
from app.services.appointment_service import AppointmentService

router = APIRouter()


def _filters(
    status_filter: str | None = Query(None, alias="status"),
    specialty_id: UUID | None = Query(None),
    patient_name: str | None = Query(None),
    date_from: str | None = Query(None),
    date_to: str | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    order_by: str = Query("appointment_date"),
    order: str = Query("asc"),
) -> AppointmentFilters:
    return AppointmentFilters(
        status=status_filter,
        specialty_id=specialty_id,
        patient_name=patient_name,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
        order_by=order_by,
        order=order,
    )


Filters = Annotated[AppointmentFilters, Depends(_filters)]


@router.post(
    "/{patient_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment for a patient",
)
async def create_appointment(
    patient_id: UUID,
    data: AppointmentCreate,
    actor: Annotated[Actor, Depends(require("appointments:create"))],
    db: DatabaseSession,
    directory: Directory,
    notifier: Notifier,
) -> AppointmentResponse:
    """
    Book a new appointment.

    Args:
        patient_id: Patient profile the appointment belongs to
        data: Appointment creation data
        actor: Authenticated caller
        db: Database session
        directory: Users service client
        notifier: Notification service

    Returns:
        Created appointment
    """
    service = AppointmentService(db, directory, notifier)
    return await service.create_appointment(patient_id, data, actor)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    summary="Search appointments",
)
async def list_appointments(
    actor: Annotated[Actor, Depends(require("appointments:list"))],
    db: DatabaseSession,
    directory: Directory,
    filters: Filters,
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
) -> AppointmentListResponse:
    """Search appointments with filters, sorting and pagination."""
    service = AppointmentService(db, directory)
    filters = filters.model_copy(update={"doctor_id": doctor_id, "patient_id": patient_id})
    return await service.list_appointments(filters, actor)


@router.get(
    "/range",
    response_model=AppointmentRangeResponse,
    summary="List appointments between two dates",
)
async def list_by_date_range(
    actor: Annotated[Actor, Depends(require("appointments:list"))],
    db: DatabaseSession,
    date_from: str | None = Query(None),
    date_to: str | None = Query(None),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
) -> AppointmentRangeResponse:
    """Unpaginated listing ordered by date, both bounds inclusive."""
    service = AppointmentService(db)
    return await service.list_by_date_range(
        date_from=date_from,
        date_to=date_to,
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status_filter,
        actor=actor,
    )


@router.get(
    "/patient/{patient_id}",
    response_model=AppointmentListResponse,
    summary="List a patient's appointments",
)
async def list_by_patient(
    patient_id: UUID,
    actor: Annotated[Actor, Depends(require("appointments:list_by_patient"))],
    db: DatabaseSession,
    directory: Directory,
    filters: Filters,
) -> AppointmentListResponse:
    """Paginated appointments of one patient."""
    service = AppointmentService(db, directory)
    return await service.list_by_patient(patient_id, filters, actor)


@router.get(
    "/doctor/{doctor_id}",
    response_model=AppointmentListResponse,
    summary="List a doctor's appointments",
)
async def list_by_doctor(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("appointments:list_by_doctor"))],
    db: DatabaseSession,
    directory: Directory,
    filters: Filters,
) -> AppointmentListResponse:
    """Paginated appointments of one doctor."""
    service = AppointmentService(db, directory)
    return await service.list_by_doctor(doctor_id, filters, actor)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: Annotated[Actor, Depends(require("appointments:read"))],
    db: DatabaseSession,
    directory: Directory,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: APPOINTMENT_NOT_FOUND
        ForbiddenException: If the caller doesn't own the appointment
    """
    service = AppointmentService(db, directory)
    return await service.get_appointment(appointment_id, actor)


@router.get(
    "/{appointment_id}/history",
    response_model=list[AppointmentHistoryResponse],
    summary="Get appointment audit trail",
)
async def get_appointment_history(
    appointment_id: UUID,
    actor: Annotated[Actor, Depends(require("appointments:read"))],
    db: DatabaseSession,
    directory: Directory,
) -> list[AppointmentHistoryResponse]:
    """Audit trail of an appointment, oldest first."""
    service = AppointmentService(db, directory)
    return await service.get_history(appointment_id, actor)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    actor: Annotated[Actor, Depends(require("appointments:update"))],
    db: DatabaseSession,
    directory: Directory,
) -> AppointmentResponse:
    """Update date, duration, reason or notes of an appointment."""
    service = AppointmentService(db, directory)
    return await service.update_appointment(appointment_id, data, actor)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    summary="Change appointment status",
)
async def change_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    actor: Annotated[Actor, Depends(require("appointments:change_status"))],
    db: DatabaseSession,
    directory: Directory,
    notifier: Notifier,
) -> AppointmentResponse:
    """Move an appointment along its state machine; accepts localized labels."""
    service = AppointmentService(db, directory, notifier)
    return await service.change_status(appointment_id, data, actor)


@router.delete(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    actor: Annotated[Actor, Depends(require("appointments:cancel"))],
    db: DatabaseSession,
    directory: Directory,
    notifier: Notifier,
    data: AppointmentCancel | None = None,
) -> AppointmentResponse:
    """Cancel an appointment; appointments are never physically deleted."""
    service = AppointmentService(db, directory, notifier)
    return await service.cancel_appointment(appointment_id, actor, data.reason if data else None)
