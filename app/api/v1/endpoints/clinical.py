"""Clinical workflow endpoints for the doctor's consultation screen."""

from datetime import date
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.policies import Actor
from app.dependencies import DatabaseSession, Directory, MedicalRecords, require
from app.schemas.queue import CurrentPatientResponse
from app.services.clinical_workflow_service import ClinicalWorkflowService

router = APIRouter()


@router.get(
    "/doctor/{doctor_id}/current",
    response_model=CurrentPatientResponse,
    summary="Get the patient being attended",
)
async def get_current_patient(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("clinical:read"))],
    db: DatabaseSession,
    directory: Directory,
    records: MedicalRecords,
) -> CurrentPatientResponse:
    """
    Today's IN_PROGRESS ticket (or the first CALLED one) with patient and record.

    Raises:
        NotFoundException: NO_CURRENT_PATIENT
    """
    service = ClinicalWorkflowService(db, directory, records)
    return await service.get_current_patient(doctor_id, actor)


@router.get(
    "/doctor/{doctor_id}/confirmed",
    summary="List confirmed appointments",
)
async def get_confirmed_appointments(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("clinical:read"))],
    db: DatabaseSession,
    directory: Directory,
    records: MedicalRecords,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
) -> dict[str, Any]:
    """CONFIRMED appointments of the doctor from today (or ``date_from``)."""
    service = ClinicalWorkflowService(db, directory, records)
    return await service.get_confirmed_appointments(doctor_id, actor, date_from, date_to)


@router.get(
    "/doctor/{doctor_id}/history",
    summary="List patients attended by the doctor",
)
async def get_doctor_history(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("clinical:read"))],
    db: DatabaseSession,
    directory: Directory,
    records: MedicalRecords,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> dict[str, Any]:
    """Medical records authored by the doctor."""
    service = ClinicalWorkflowService(db, directory, records)
    return await service.get_doctor_history(doctor_id, actor, page, limit)
