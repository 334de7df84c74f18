"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from carebook.models.users import metadata

appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Ownership / references
    Column(
        "patient_id",
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column(
        "doctor_id",
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    # Slot start, always a full timestamp
    Column("scheduled_at", TIMESTAMP(timezone=True), nullable=False),
    Column("purpose", Text, nullable=False, server_default="General Consultation"),
    # Clinical fields
    Column("notes", Text, nullable=False, server_default=""),
    Column("prescription", Text, nullable=True),
    # Status management
    Column("status", Text, nullable=False, server_default="pending"),
    Column("cancelled_by", Text, nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_at", TIMESTAMP(timezone=True), nullable=True),
    Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "cancelled_by IS NULL OR cancelled_by IN ('patient', 'doctor')",
        name="appointments_cancelled_by_check",
    ),
    Index("idx_appointments_doctor_scheduled_at", "doctor_id", "scheduled_at"),
    Index("idx_appointments_patient_scheduled_at", "patient_id", "scheduled_at"),
)

NO_OVERLAP_CONSTRAINT = "appointments_doctor_no_overlap"


def no_overlap_constraint_ddl(window_minutes: int) -> str:
    """
    DDL for the database-level backstop on conflict freedom.

    Closed ranges of half the window on either side of each active slot may not
    overlap, which is the same as two active slots of one doctor starting within
    ``window_minutes`` of each other. The range is built on the UTC wall-clock
    value because ``timestamptz + interval`` is not immutable.
    """
    half_width = f"interval '{window_minutes * 30} seconds'"
    return f"""
ALTER TABLE appointments
ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT}
EXCLUDE USING gist (
    doctor_id WITH =,
    tsrange(
        (scheduled_at AT TIME ZONE 'UTC') - {half_width},
        (scheduled_at AT TIME ZONE 'UTC') + {half_width},
        '[]'
    ) WITH &&
)
WHERE (status IN ('pending', 'confirmed'))
"""
