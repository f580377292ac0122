"""Queue ticket table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)

from app.utils.time_grid import utc_now

OPEN_TICKET_CONDITION = "status IN ('WAITING', 'CALLED', 'IN_PROGRESS')"

metadata = MetaData()

queue_tickets = Table(
    "queue_tickets",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("doctor_id", Uuid, nullable=False),
    Column("patient_id", Uuid, nullable=False, index=True),
    # Back-reference only, appointments are a separate aggregate
    Column("appointment_id", Uuid, nullable=True, index=True),
    Column("ticket_number", Integer, nullable=False),
    Column("queue_date", Date, nullable=False),
    Column("status", Text, nullable=False, server_default="WAITING"),
    Column("position", Integer, nullable=True),
    Column("estimated_wait_time", Integer, nullable=True),
    Column("called_at", DateTime(timezone=True), nullable=True),
    Column("started_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("no_show_at", DateTime(timezone=True), nullable=True),
    Column("updated_by", Uuid, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    ),
    UniqueConstraint(
        "doctor_id",
        "queue_date",
        "ticket_number",
        name="uq_queue_tickets_doctor_day_number",
    ),
    CheckConstraint(
        "status IN ('WAITING', 'CALLED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
        name="queue_tickets_status_check",
    ),
    Index("ix_queue_tickets_doctor_day_status", "doctor_id", "queue_date", "status"),
    # at most one open ticket per patient in a doctor's queue for the day
    Index(
        "uq_queue_tickets_open_patient",
        "doctor_id",
        "patient_id",
        "queue_date",
        unique=True,
        postgresql_where=text(OPEN_TICKET_CONDITION),
        sqlite_where=text(OPEN_TICKET_CONDITION),
    ),
)
