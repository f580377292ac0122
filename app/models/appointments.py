"""Appointment and appointment history tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Uuid,
    text,
)

from app.utils.time_grid import utc_now

# Metadata for appointment tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column("patient_id", Uuid, nullable=False, index=True),
    Column("doctor_id", Uuid, nullable=False, index=True),
    Column("specialty_id", Uuid, nullable=True, index=True),
    # Appointment details
    Column("appointment_date", DateTime(timezone=True), nullable=False, index=True),
    Column("duration", Integer, nullable=False, server_default=text("30")),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # Status management
    Column("status", Text, nullable=False, server_default="SCHEDULED", index=True),
    Column("is_rescheduled", Boolean, nullable=False, server_default=text("false")),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    ),
    CheckConstraint(
        "status IN ('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS', 'RESCHEDULED', 'COMPLETED', 'CANCELLED')",
        name="appointments_status_check",
    ),
    CheckConstraint("duration IN (15, 30, 45, 60)", name="appointments_duration_check"),
    Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
)

# Append-only audit trail, one row per appointment mutation
appointment_history = Table(
    "appointment_history",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("action", Text, nullable=False),
    Column("previous_status", Text, nullable=True),
    Column("new_status", Text, nullable=True),
    Column("previous_data", JSON, nullable=True),
    Column("new_data", JSON, nullable=True),
    Column("changed_fields", JSON, nullable=False, default=list),
    Column("changed_by", Uuid, nullable=True),
    Column("changed_by_role", Text, nullable=False, server_default="SYSTEM"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    CheckConstraint(
        "action IN ('CREATED', 'UPDATED', 'STATUS_CHANGED', 'CANCELLED', "
        "'RESCHEDULED', 'RESCHEDULE_ATTEMPT')",
        name="appointment_history_action_check",
    ),
)
