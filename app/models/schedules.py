"""Doctor schedule and blocked slot tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from app.utils.time_grid import utc_now

metadata = MetaData()

# Weekly recurring availability windows
schedules = Table(
    "schedules",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("doctor_id", Uuid, nullable=False, index=True),
    Column("day_of_week", Integer, nullable=False),
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    Column("slot_duration", Integer, nullable=False, server_default=text("30")),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    ),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="schedules_day_of_week_check"),
    CheckConstraint("slot_duration > 0", name="schedules_slot_duration_check"),
    Index("ix_schedules_doctor_day", "doctor_id", "day_of_week"),
)

# One-off unavailable ranges inside a schedule window
blocked_slots = Table(
    "blocked_slots",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "schedule_id",
        Uuid,
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("blocked_date", Date, nullable=False),
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    Column("reason", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utc_now),
)
