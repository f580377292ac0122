"""Database models."""

from sqlalchemy import MetaData

from app.models.appointments import appointment_history, appointments
from app.models.appointments import metadata as appointments_metadata
from app.models.queue_tickets import metadata as queue_metadata
from app.models.queue_tickets import queue_tickets
from app.models.schedules import blocked_slots, schedules
from app.models.schedules import metadata as schedules_metadata


def combined_metadata() -> MetaData:
    """Collect every table into one MetaData for create_all and migrations."""
    metadata = MetaData()
    for source in (appointments_metadata, schedules_metadata, queue_metadata):
        for table in source.tables.values():
            table.to_metadata(metadata)
    return metadata


__all__ = [
    "appointment_history",
    "appointments",
    "blocked_slots",
    "combined_metadata",
    "queue_tickets",
    "schedules",
]
