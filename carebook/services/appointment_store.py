"""Appointment persistence on top of SQLAlchemy Core."""

import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.core.exceptions import ConflictException
from carebook.database import execute_with_timeout
from carebook.models.appointments import NO_OVERLAP_CONSTRAINT, appointments
from carebook.models.users import users
from carebook.schemas.appointments import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentPage,
    AppointmentStatus,
)

logger = structlog.get_logger()

# Exclusion constraint violation
EXCLUSION_VIOLATION = "23P01"


def _plain(values: dict[str, Any]) -> dict[str, Any]:
    """Unwrap enum members into the text values stored in the table."""
    return {key: value.value if isinstance(value, Enum) else value for key, value in values.items()}


class AppointmentStore:
    """Store for appointment rows."""

    def __init__(self, db: AsyncSession, timeout: float | None = None):
        """Initialize store with database session."""
        self.db = db
        self.timeout = timeout

    async def _execute(self, statement: Any) -> Any:
        try:
            return await execute_with_timeout(
                self.db, statement, timeout=self.timeout, store="appointment store"
            )
        except IntegrityError as e:
            sqlstate = getattr(e.orig, "sqlstate", None)
            if sqlstate == EXCLUSION_VIOLATION or NO_OVERLAP_CONSTRAINT in str(e.orig):
                logger.warning("appointment_overlap_rejected_by_database")
                raise ConflictException("Doctor already has an appointment at this time.")
            raise

    @asynccontextmanager
    async def transaction(self, lock_doctor_id: UUID | None = None) -> AsyncIterator[None]:
        """
        Run the enclosed store calls in one database transaction.

        With ``lock_doctor_id`` the doctor's directory row is locked with
        ``SELECT ... FOR UPDATE`` first, so every conflict check and write for
        that doctor is serialised until commit or rollback.
        """
        # Close the implicit read transaction opened by earlier lookups
        if self.db.in_transaction():
            await self.db.commit()

        async with self.db.begin():
            if lock_doctor_id is not None:
                await self._execute(
                    select(users.c.id).where(users.c.id == lock_doctor_id).with_for_update()
                )
            yield

    async def create(self, values: dict[str, Any]) -> Appointment:
        """Insert a new appointment and return the stored row."""
        stmt = insert(appointments).values(**_plain(values)).returning(appointments)
        result = await self._execute(stmt)
        row = result.mappings().one()
        return Appointment.model_validate(dict(row))

    async def find_by_id(self, appointment_id: UUID) -> Appointment | None:
        """Get appointment by ID."""
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self._execute(stmt)
        row = result.mappings().first()
        return Appointment.model_validate(dict(row)) if row else None

    async def find_conflict(
        self,
        doctor_id: UUID,
        scheduled_at: datetime,
        window: timedelta,
        exclude_id: UUID | None = None,
    ) -> Appointment | None:
        """
        Find an active appointment of the doctor within ``window`` of a slot.

        Both window edges are inclusive.
        """
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.scheduled_at >= scheduled_at - window,
            appointments.c.scheduled_at <= scheduled_at + window,
            appointments.c.status.in_([status.value for status in ACTIVE_STATUSES]),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.scheduled_at)
            .limit(1)
        )
        result = await self._execute(stmt)
        row = result.mappings().first()
        return Appointment.model_validate(dict(row)) if row else None

    async def conditional_update(
        self,
        appointment_id: UUID,
        expected_status: AppointmentStatus,
        patch: dict[str, Any],
    ) -> Appointment | None:
        """
        Apply ``patch`` only if the appointment still has ``expected_status``.

        Returns:
            The updated appointment, or None when the status guard failed
        """
        values = _plain(patch)
        values["updated_at"] = datetime.now(UTC)

        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.status == expected_status.value,
                )
            )
            .values(**values)
            .returning(appointments)
        )
        result = await self._execute(stmt)
        row = result.mappings().first()
        return Appointment.model_validate(dict(row)) if row else None

    async def paginated_find(self, filters: AppointmentFilter) -> AppointmentPage:
        """List appointments matching a filter, newest slot first."""
        conditions = []

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.scheduled_from:
            conditions.append(appointments.c.scheduled_at >= filters.scheduled_from)

        if filters.scheduled_to:
            conditions.append(appointments.c.scheduled_at <= filters.scheduled_to)

        where = and_(true(), *conditions)

        # Count total
        count_stmt = select(func.count()).select_from(appointments).where(where)
        total_result = await self._execute(count_stmt)
        total = total_result.scalar() or 0

        # Get paginated results
        offset = (filters.page - 1) * filters.limit

        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.scheduled_at.desc())
            .limit(filters.limit)
            .offset(offset)
        )
        result = await self._execute(stmt)
        items = [Appointment.model_validate(dict(row)) for row in result.mappings().all()]

        return AppointmentPage(
            items=items,
            total=total,
            pages=max(1, math.ceil(total / filters.limit)),
            page=filters.page,
            limit=filters.limit,
        )
