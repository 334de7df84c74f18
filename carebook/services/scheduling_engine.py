"""Appointment lifecycle: booking, acceptance, cancellation and completion.

Every HTTP entry point goes through :class:`SchedulingEngine`; the conflict
window and cancellation notice rules live here and nowhere else.

State machine::

    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled
    cancelled, completed: terminal
"""

import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from carebook.config import Settings, settings
from carebook.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from carebook.schemas.appointments import (
    Appointment,
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    CancelledBy,
    ConflictingAppointment,
    UserSummary,
)
from carebook.schemas.users import Caller, DirectoryUser, UserRole
from carebook.services.appointment_filters import build_appointment_filter
from carebook.services.appointment_store import AppointmentStore
from carebook.services.directory_service import DirectoryService

logger = structlog.get_logger()

CANCEL_ATTEMPTS = 2


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _hours(value: float) -> str:
    return "1 hour" if value == 1 else f"{value:g} hours"


class SchedulingRules(BaseModel):
    """Tunable scheduling constants."""

    conflict_window_minutes: int = Field(default=30, ge=1)
    patient_cancel_notice_hours: float = Field(default=24, ge=0)
    doctor_cancel_notice_hours: float = Field(default=1, ge=0)
    default_purpose: str = "General Consultation"
    default_cancellation_reason: str = "No reason provided"

    @property
    def conflict_window(self) -> timedelta:
        """Half-width of the window around a slot that must stay free."""
        return timedelta(minutes=self.conflict_window_minutes)

    @classmethod
    def from_settings(cls, config: Settings) -> "SchedulingRules":
        """Build rules from application settings."""
        return cls(
            conflict_window_minutes=config.conflict_window_minutes,
            patient_cancel_notice_hours=config.patient_cancel_notice_hours,
            doctor_cancel_notice_hours=config.doctor_cancel_notice_hours,
            default_purpose=config.default_purpose,
            default_cancellation_reason=config.default_cancellation_reason,
        )


class SchedulingEngine:
    """Enforces booking validity, conflict freedom and status transitions."""

    def __init__(
        self,
        store: AppointmentStore,
        directory: DirectoryService,
        rules: SchedulingRules | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize engine with its stores, rules and a clock."""
        self.store = store
        self.directory = directory
        self.rules = rules or SchedulingRules.from_settings(settings)
        self.clock = clock

    def _now(self) -> datetime:
        return as_utc(self.clock())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_appointments(
        self,
        caller: Caller,
        view: UserRole,
        status: str | None = None,
        from_date: str | None = None,
        to_date: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> AppointmentListResponse:
        """
        List the caller's own appointments as patient or as doctor.

        Args:
            caller: Verified identity of the requester
            view: Which side of the appointments to list
            status: Optional status filter
            from_date: Optional inclusive lower bound
            to_date: Optional inclusive upper bound
            page: Page number
            limit: Items per page

        Returns:
            Paginated, enriched list of appointments
        """
        filters = build_appointment_filter(
            caller,
            view,
            status=status,
            from_date=from_date,
            to_date=to_date,
            page=page,
            limit=limit,
        )
        result = await self.store.paginated_find(filters)

        user_ids = {a.doctor_id for a in result.items} | {a.patient_id for a in result.items}
        people = await self.directory.find_users(user_ids)

        return AppointmentListResponse(
            items=[self._enrich(a, people) for a in result.items],
            total=result.total,
            pages=result.pages,
            page=result.page,
            limit=result.limit,
        )

    async def get_appointment(self, caller: Caller, appointment_id: UUID) -> AppointmentResponse:
        """
        Get one appointment.

        Readable by the assigned patient, the assigned doctor or an admin.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If user doesn't have access
        """
        appointment = await self._load(appointment_id)

        is_party = caller.user_id in (appointment.patient_id, appointment.doctor_id)
        if not is_party and caller.role != UserRole.ADMIN:
            raise ForbiddenException("Not authorized to view this appointment.")

        return await self._enriched(appointment)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def book(self, caller: Caller, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book a new pending appointment for the calling patient.

        The conflict check and the insert run in one transaction holding the
        doctor's row lock, so overlapping bookings for one doctor serialise.

        Raises:
            ForbiddenException: If the caller is not a patient
            ValidationException: If the slot is not strictly in the future
            NotFoundException: If the doctor or the patient record is missing
            ConflictException: If the doctor has an active appointment in the window
        """
        if caller.role != UserRole.PATIENT:
            raise ForbiddenException("Access denied. Patients only.")

        scheduled_at = as_utc(data.scheduled_at)
        now = self._now()
        if scheduled_at <= now:
            raise ValidationException(
                "Invalid or past appointment date.",
                details={"scheduled_at": scheduled_at, "current_time": now},
            )

        # Read past the directory cache: a deactivated doctor takes no new bookings
        doctor = await self.directory.find_user(data.doctor_id, fresh=True)
        if doctor is None or doctor.role != UserRole.DOCTOR or not doctor.is_active:
            raise NotFoundException("Doctor not found.", details={"doctor_id": data.doctor_id})

        patient = await self.directory.find_user(caller.user_id)
        if patient is None or patient.role != UserRole.PATIENT:
            raise NotFoundException("Patient not found.", details={"patient_id": caller.user_id})

        message = "Doctor already has an appointment at this time."
        try:
            async with self.store.transaction(lock_doctor_id=doctor.id):
                conflict = await self.store.find_conflict(
                    doctor.id, scheduled_at, self.rules.conflict_window
                )
                if conflict:
                    raise self._conflict(conflict, message)

                appointment = await self.store.create(
                    {
                        "patient_id": patient.id,
                        "doctor_id": doctor.id,
                        "scheduled_at": scheduled_at,
                        "purpose": data.purpose or self.rules.default_purpose,
                        "notes": data.notes or "",
                        "status": AppointmentStatus.PENDING,
                    }
                )
        except ConflictException as exc:
            if "conflicting_appointment" in exc.details:
                raise
            # Refused by the exclusion constraint. The transaction has rolled
            # back, so the committed row that won the slot is visible now.
            conflict = await self.store.find_conflict(
                doctor.id, scheduled_at, self.rules.conflict_window
            )
            if conflict is None:
                raise
            raise self._conflict(conflict, message) from exc

        logger.info(
            "appointment_booked",
            appointment_id=str(appointment.id),
            doctor_id=str(doctor.id),
            patient_id=str(patient.id),
            scheduled_at=scheduled_at.isoformat(),
        )
        return self._enrich(appointment, {doctor.id: doctor, patient.id: patient})

    async def accept(self, caller: Caller, appointment_id: UUID) -> AppointmentResponse:
        """
        Confirm a pending appointment.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the caller is not the assigned doctor
            InvalidStateException: If not pending, or the slot has passed
            ConflictException: If another active appointment overlaps the slot
        """
        if caller.role != UserRole.DOCTOR:
            raise ForbiddenException("Access denied. Doctors only.")

        appointment = await self._load(appointment_id)

        if appointment.doctor_id != caller.user_id:
            raise ForbiddenException("Not authorized to accept this appointment.")

        self._require_status(appointment, AppointmentStatus.PENDING, "accept")

        now = self._now()
        if appointment.scheduled_at <= now:
            raise InvalidStateException(
                "Cannot accept a past appointment.",
                details={
                    "current_status": appointment.status,
                    "scheduled_at": appointment.scheduled_at,
                    "current_time": now,
                },
            )

        async with self.store.transaction(lock_doctor_id=appointment.doctor_id):
            conflict = await self.store.find_conflict(
                appointment.doctor_id,
                appointment.scheduled_at,
                self.rules.conflict_window,
                exclude_id=appointment.id,
            )
            if conflict:
                raise self._conflict(conflict, "You already have an appointment at this time.")

            updated = await self.store.conditional_update(
                appointment.id,
                AppointmentStatus.PENDING,
                {"status": AppointmentStatus.CONFIRMED},
            )
            if updated is None:
                raise await self._lost_race(appointment.id, "accept")

        logger.info("appointment_accepted", appointment_id=str(updated.id))
        return await self._enriched(updated)

    async def cancel(
        self,
        caller: Caller,
        appointment_id: UUID,
        data: AppointmentCancel | None = None,
    ) -> AppointmentResponse:
        """
        Cancel an active appointment.

        Patients must cancel at least ``patient_cancel_notice_hours`` ahead of
        the slot, doctors at least ``doctor_cancel_notice_hours`` ahead.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the caller is not a party or the notice window closed
            InvalidStateException: If the appointment is already cancelled or completed
        """
        appointment = await self._load(appointment_id)

        is_patient = caller.user_id == appointment.patient_id
        is_doctor = caller.user_id == appointment.doctor_id
        if not is_patient and not is_doctor:
            raise ForbiddenException("Not authorized to cancel this appointment.")

        cancelled_by = CancelledBy.PATIENT if is_patient else CancelledBy.DOCTOR
        reason = data.reason if data and data.reason else self.rules.default_cancellation_reason

        # pending and confirmed are both cancellable, so a status change that
        # lands between the read and the write is retried against the new status.
        for attempt in range(1, CANCEL_ATTEMPTS + 1):
            if appointment.status.is_terminal:
                raise InvalidStateException(
                    f"Cannot cancel a {appointment.status.value} appointment.",
                    details={"current_status": appointment.status},
                )

            now = self._now()
            hours_remaining = self._check_cancel_notice(appointment, cancelled_by, now)

            async with self.store.transaction():
                updated = await self.store.conditional_update(
                    appointment.id,
                    appointment.status,
                    {
                        "status": AppointmentStatus.CANCELLED,
                        "cancelled_by": cancelled_by,
                        "cancellation_reason": reason,
                        "cancelled_at": now,
                    },
                )
            if updated is not None:
                break

            if attempt == CANCEL_ATTEMPTS:
                raise await self._lost_race(appointment.id, "cancel")

            logger.info(
                "appointment_cancel_retry",
                appointment_id=str(appointment.id),
                expected_status=appointment.status.value,
                attempt=attempt,
            )
            appointment = await self._load(appointment.id)

        logger.info(
            "appointment_cancelled",
            appointment_id=str(updated.id),
            cancelled_by=cancelled_by.value,
            hours_remaining=round(hours_remaining, 2),
        )
        return await self._enriched(updated)

    async def complete(
        self,
        caller: Caller,
        appointment_id: UUID,
        data: AppointmentComplete | None = None,
    ) -> AppointmentResponse:
        """
        Mark a confirmed appointment whose slot has started as completed.

        Non-empty ``notes``/``prescription`` replace the stored values, anything
        else keeps them.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the caller is not the assigned doctor
            InvalidStateException: If not confirmed, or the slot is still ahead
        """
        if caller.role != UserRole.DOCTOR:
            raise ForbiddenException("Access denied. Doctors only.")

        appointment = await self._load(appointment_id)

        if appointment.doctor_id != caller.user_id:
            raise ForbiddenException("Not authorized to complete this appointment.")

        self._require_status(appointment, AppointmentStatus.CONFIRMED, "complete")

        now = self._now()
        if appointment.scheduled_at > now:
            raise InvalidStateException(
                "Cannot complete a future appointment.",
                details={
                    "current_status": appointment.status,
                    "scheduled_at": appointment.scheduled_at,
                    "current_time": now,
                },
            )

        patch: dict = {"status": AppointmentStatus.COMPLETED, "completed_at": now}
        if data and data.notes:
            patch["notes"] = data.notes
        if data and data.prescription:
            patch["prescription"] = data.prescription

        async with self.store.transaction():
            updated = await self.store.conditional_update(
                appointment.id, AppointmentStatus.CONFIRMED, patch
            )
            if updated is None:
                raise await self._lost_race(appointment.id, "complete")

        logger.info("appointment_completed", appointment_id=str(updated.id))
        return await self._enriched(updated)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, appointment_id: UUID) -> Appointment:
        appointment = await self.store.find_by_id(appointment_id)
        if appointment is None:
            raise NotFoundException(
                "Appointment not found.", details={"appointment_id": appointment_id}
            )
        return appointment

    def _check_cancel_notice(
        self,
        appointment: Appointment,
        cancelled_by: CancelledBy,
        now: datetime,
    ) -> float:
        """Return the hours left before the slot, or raise if too late to cancel."""
        hours_remaining = (appointment.scheduled_at - now).total_seconds() / 3600

        if cancelled_by == CancelledBy.PATIENT:
            required = self.rules.patient_cancel_notice_hours
        else:
            required = self.rules.doctor_cancel_notice_hours

        if hours_remaining < required:
            raise ForbiddenException(
                f"{cancelled_by.value.capitalize()}s must cancel at least "
                f"{_hours(required)} before the appointment.",
                details={
                    "hours_remaining": math.ceil(hours_remaining),
                    "required_hours": required,
                },
            )
        return hours_remaining

    @staticmethod
    def _require_status(
        appointment: Appointment,
        expected: AppointmentStatus,
        action: str,
    ) -> None:
        if appointment.status != expected:
            raise InvalidStateException(
                f"Cannot {action} a {appointment.status.value} appointment.",
                details={"current_status": appointment.status},
            )

    async def _lost_race(self, appointment_id: UUID, action: str) -> Exception:
        """Explain a failed status guard using the appointment's current state."""
        current = await self.store.find_by_id(appointment_id)
        if current is None:
            return NotFoundException(
                "Appointment not found.", details={"appointment_id": appointment_id}
            )
        logger.info(
            "appointment_transition_lost_race",
            appointment_id=str(appointment_id),
            action=action,
            current_status=current.status.value,
        )
        return InvalidStateException(
            f"Cannot {action} a {current.status.value} appointment.",
            details={"current_status": current.status},
        )

    @staticmethod
    def _conflict(conflict: Appointment, message: str) -> ConflictException:
        logger.info(
            "appointment_conflict",
            doctor_id=str(conflict.doctor_id),
            conflicting_appointment_id=str(conflict.id),
        )
        blocking = ConflictingAppointment(
            id=conflict.id,
            scheduled_at=conflict.scheduled_at,
            patient_id=conflict.patient_id,
        )
        return ConflictException(message, details={"conflicting_appointment": blocking})

    async def _enriched(self, appointment: Appointment) -> AppointmentResponse:
        people = await self.directory.find_users([appointment.doctor_id, appointment.patient_id])
        return self._enrich(appointment, people)

    @staticmethod
    def _enrich(
        appointment: Appointment,
        people: dict[UUID, DirectoryUser],
    ) -> AppointmentResponse:
        doctor = people.get(appointment.doctor_id)
        patient = people.get(appointment.patient_id)
        return AppointmentResponse(
            **appointment.model_dump(),
            doctor=(
                UserSummary(
                    id=doctor.id,
                    name=doctor.full_name,
                    phone=doctor.phone,
                    specialization=doctor.specialization,
                )
                if doctor
                else None
            ),
            patient=(
                UserSummary(
                    id=patient.id,
                    name=patient.full_name,
                    email=patient.email,
                    phone=patient.phone,
                )
                if patient
                else None
            ),
        )
