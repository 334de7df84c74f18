"""User (directory) schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Roles known to the directory and carried in access tokens."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Caller(BaseModel):
    """Verified identity of the user making a request."""

    user_id: UUID
    role: UserRole

    model_config = {"frozen": True}


class DirectoryUser(BaseModel):
    """User record as stored in the directory."""

    id: UUID
    full_name: str
    email: str
    phone: str | None = None
    role: UserRole
    specialization: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class DoctorProfile(BaseModel):
    """Public doctor profile shown to patients browsing the directory."""

    id: UUID
    full_name: str
    email: str
    phone: str | None = None
    specialization: str | None = None


class DoctorListResponse(BaseModel):
    """Paginated doctor list."""

    items: list[DoctorProfile]
    total: int
    pages: int
    page: int
    limit: int


class DoctorFilters(BaseModel):
    """Doctor listing parameters."""

    specialization: str | None = Field(None, max_length=200)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
