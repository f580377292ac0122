"""Same-day queue endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.core.policies import Actor
from app.dependencies import DatabaseSession, Directory, require
from app.schemas.queue import (
    DoctorQueueResponse,
    QueueJoinRequest,
    QueueJoinResponse,
    TicketPositionResponse,
    TicketTransitionResponse,
)
from app.services.queue_service import QueueService

router = APIRouter()


@router.post(
    "/join",
    response_model=QueueJoinResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Join a doctor's queue",
)
async def join_queue(
    data: QueueJoinRequest,
    actor: Annotated[Actor, Depends(require("queue:join"))],
    db: DatabaseSession,
    directory: Directory,
) -> QueueJoinResponse:
    """
    Take a ticket in today's queue; joining twice returns the same ticket.

    Joining with an appointment confirms that appointment.
    """
    return await QueueService(db, directory).join(data, actor)


@router.get(
    "/doctor/{doctor_id}/current-queue",
    response_model=DoctorQueueResponse,
    summary="Get a doctor's queue",
)
async def get_doctor_current_queue(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:read"))],
    db: DatabaseSession,
    day: date | None = Query(None, alias="date"),
    include_finished: bool = Query(False),
) -> DoctorQueueResponse:
    """Tickets of the day in ticket order with their waiting minutes."""
    return await QueueService(db).get_doctor_current_queue(doctor_id, actor, day, include_finished)


@router.post(
    "/doctor/{doctor_id}/call-next",
    response_model=TicketTransitionResponse,
    summary="Call the next waiting patient",
)
async def call_next(
    doctor_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:call"))],
    db: DatabaseSession,
) -> TicketTransitionResponse:
    """
    Call the lowest-numbered WAITING ticket.

    Raises:
        NotFoundException: EMPTY_QUEUE
    """
    return await QueueService(db).call_next(doctor_id, actor)


@router.put(
    "/ticket/{ticket_id}/call",
    response_model=TicketTransitionResponse,
    summary="Call a specific ticket",
)
async def call_ticket(
    ticket_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:call"))],
    db: DatabaseSession,
) -> TicketTransitionResponse:
    """Call a ticket out of FIFO order."""
    return await QueueService(db).call_ticket(ticket_id, actor)


@router.put(
    "/ticket/{ticket_id}/start",
    response_model=TicketTransitionResponse,
    summary="Start attending a ticket",
)
async def start_ticket(
    ticket_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:start"))],
    db: DatabaseSession,
) -> TicketTransitionResponse:
    return await QueueService(db).start_ticket(ticket_id, actor)


@router.put(
    "/ticket/{ticket_id}/complete",
    response_model=TicketTransitionResponse,
    summary="Complete a ticket",
)
async def complete_ticket(
    ticket_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:complete"))],
    db: DatabaseSession,
) -> TicketTransitionResponse:
    return await QueueService(db).complete_ticket(ticket_id, actor)


@router.put(
    "/ticket/{ticket_id}/no-show",
    response_model=TicketTransitionResponse,
    summary="Mark a ticket as no-show",
)
async def mark_no_show(
    ticket_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:no_show"))],
    db: DatabaseSession,
) -> TicketTransitionResponse:
    return await QueueService(db).mark_no_show(ticket_id, actor)


@router.delete(
    "/ticket/{ticket_id}/cancel",
    response_model=TicketTransitionResponse,
    summary="Leave the queue",
)
async def cancel_ticket(
    ticket_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:cancel"))],
    db: DatabaseSession,
    directory: Directory,
) -> TicketTransitionResponse:
    return await QueueService(db, directory).cancel_ticket(ticket_id, actor)


@router.get(
    "/ticket/{ticket_id}/position",
    response_model=TicketPositionResponse,
    summary="Get a ticket's position and wait estimate",
)
async def get_ticket_position(
    ticket_id: UUID,
    actor: Annotated[Actor, Depends(require("queue:position"))],
    db: DatabaseSession,
    directory: Directory,
) -> TicketPositionResponse:
    """Recompute the ticket's position and estimated wait."""
    return await QueueService(db, directory).get_position(ticket_id, actor)
