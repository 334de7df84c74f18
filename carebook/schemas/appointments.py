"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        """Cancelled and completed appointments accept no further transitions."""
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})

# Older clients speak accepted/rejected; translate them at the boundary
LEGACY_STATUS_ALIASES = {
    "accepted": AppointmentStatus.CONFIRMED,
    "rejected": AppointmentStatus.CANCELLED,
}


class CancelledBy(str, Enum):
    """Party that cancelled an appointment."""

    PATIENT = "patient"
    DOCTOR = "doctor"


class Appointment(BaseModel):
    """Appointment record as held by the store."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    scheduled_at: datetime
    purpose: str
    notes: str = ""
    prescription: str | None = None
    status: AppointmentStatus
    cancelled_by: CancelledBy | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """Directory fields attached to an appointment for display."""

    id: UUID
    name: str
    email: str | None = None
    phone: str | None = None
    specialization: str | None = None


class AppointmentResponse(Appointment):
    """Appointment enriched with doctor and patient summaries."""

    doctor: UserSummary | None = None
    patient: UserSummary | None = None


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    items: list[AppointmentResponse]
    total: int
    pages: int
    page: int
    limit: int


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    doctor_id: UUID
    scheduled_at: datetime
    purpose: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=2000)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class AppointmentComplete(BaseModel):
    """Schema for completing an appointment."""

    notes: str | None = Field(None, max_length=2000)
    prescription: str | None = Field(None, max_length=4000)


class ConflictingAppointment(BaseModel):
    """Diagnostic payload describing the appointment that blocks a slot."""

    id: UUID
    scheduled_at: datetime
    patient_id: UUID


class AppointmentFilter(BaseModel):
    """Store-level filter produced by the query builder."""

    patient_id: UUID | None = None
    doctor_id: UUID | None = None
    status: AppointmentStatus | None = None
    scheduled_from: datetime | None = None
    scheduled_to: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    model_config = {"frozen": True}


class AppointmentPage(BaseModel):
    """One page of raw appointments returned by the store."""

    items: list[Appointment]
    total: int
    pages: int
    page: int
    limit: int
