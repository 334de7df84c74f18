"""Translate role-scoped list requests into appointment store filters."""

from datetime import UTC, date, datetime, time, timedelta

from carebook.core.exceptions import ForbiddenException, ValidationException
from carebook.schemas.appointments import (
    LEGACY_STATUS_ALIASES,
    AppointmentFilter,
    AppointmentStatus,
)
from carebook.schemas.users import Caller, UserRole

MAX_PAGE_SIZE = 100

_VIEW_DENIED = {
    UserRole.PATIENT: "Access denied. Patients only.",
    UserRole.DOCTOR: "Access denied. Doctors only.",
}


def parse_status(value: str | None) -> AppointmentStatus | None:
    """Parse a status filter, accepting the legacy accepted/rejected names."""
    if value is None or value == "":
        return None

    normalized = value.strip().lower()
    if normalized in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[normalized]

    try:
        return AppointmentStatus(normalized)
    except ValueError:
        allowed = [s.value for s in AppointmentStatus]
        raise ValidationException(
            f"Invalid status '{value}'",
            details={"field": "status", "allowed": allowed},
        )


def parse_date_bound(value: str, *, end_of_day: bool, field: str) -> datetime:
    """
    Parse a ``from``/``to`` bound into an aware UTC datetime.

    A bare date covers the whole UTC day: the lower bound snaps to midnight and
    the upper bound to the last microsecond of that day. A value carrying a
    time is used as given; naive values are read as UTC.
    """
    raw = value.strip()
    try:
        day = date.fromisoformat(raw)
    except ValueError:
        day = None

    if day is not None:
        if end_of_day:
            return datetime.combine(day, time.min, tzinfo=UTC) + timedelta(days=1, microseconds=-1)
        return datetime.combine(day, time.min, tzinfo=UTC)

    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationException(
            f"Invalid date '{value}'",
            details={"field": field, "value": value},
        )

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def build_appointment_filter(
    caller: Caller,
    view: UserRole,
    status: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> AppointmentFilter:
    """
    Build the store filter for a patient or doctor listing.

    Args:
        caller: Verified identity of the requester
        view: ``patient`` or ``doctor`` listing
        status: Optional status name
        from_date: Optional inclusive lower bound (date or datetime)
        to_date: Optional inclusive upper bound (date or datetime)
        page: 1-based page number
        limit: Page size, 1 to 100

    Returns:
        Filter scoped to the caller's own appointments

    Raises:
        ForbiddenException: If the caller's role does not match the view
        ValidationException: On bad status, dates or pagination values
    """
    if view not in _VIEW_DENIED:
        raise ValidationException(f"Unsupported view '{view.value}'")
    if caller.role != view:
        raise ForbiddenException(_VIEW_DENIED[view])

    if page < 1:
        raise ValidationException("page must be at least 1", details={"field": "page"})
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationException(
            f"limit must be between 1 and {MAX_PAGE_SIZE}",
            details={"field": "limit"},
        )

    scheduled_from = (
        parse_date_bound(from_date, end_of_day=False, field="from") if from_date else None
    )
    scheduled_to = parse_date_bound(to_date, end_of_day=True, field="to") if to_date else None

    if scheduled_from and scheduled_to and scheduled_from > scheduled_to:
        raise ValidationException(
            "'from' must not be after 'to'",
            details={"from": from_date, "to": to_date},
        )

    owner = {"patient_id": caller.user_id}
    if view == UserRole.DOCTOR:
        owner = {"doctor_id": caller.user_id}

    return AppointmentFilter(
        **owner,
        status=parse_status(status),
        scheduled_from=scheduled_from,
        scheduled_to=scheduled_to,
        page=page,
        limit=limit,
    )
