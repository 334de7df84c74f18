"""Appointment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from carebook.dependencies import CurrentCaller, Scheduler
from carebook.schemas.appointments import (
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
)
from carebook.schemas.common import ApiResponse
from carebook.schemas.users import UserRole

router = APIRouter()


@router.get(
    "/patient",
    response_model=ApiResponse[AppointmentListResponse],
    status_code=status.HTTP_200_OK,
    summary="List the patient's appointments",
)
async def list_patient_appointments(
    caller: CurrentCaller,
    engine: Scheduler,
    status_filter: str | None = Query(None, alias="status"),
    from_date: str | None = Query(None, alias="from"),
    to_date: str | None = Query(None, alias="to"),
    page: int = Query(1),
    limit: int = Query(10),
) -> ApiResponse[AppointmentListResponse]:
    """
    List appointments where the caller is the patient.

    Args:
        caller: Authenticated caller
        engine: Scheduling engine
        status_filter: Filter by status
        from_date: Inclusive start date or datetime
        to_date: Inclusive end date or datetime
        page: Page number
        limit: Items per page

    Returns:
        Paginated list of appointments
    """
    result = await engine.list_appointments(
        caller,
        UserRole.PATIENT,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )
    return ApiResponse(data=result)


@router.get(
    "/doctor",
    response_model=ApiResponse[AppointmentListResponse],
    status_code=status.HTTP_200_OK,
    summary="List the doctor's appointments",
)
async def list_doctor_appointments(
    caller: CurrentCaller,
    engine: Scheduler,
    status_filter: str | None = Query(None, alias="status"),
    from_date: str | None = Query(None, alias="from"),
    to_date: str | None = Query(None, alias="to"),
    page: int = Query(1),
    limit: int = Query(10),
) -> ApiResponse[AppointmentListResponse]:
    """List appointments where the caller is the doctor."""
    result = await engine.list_appointments(
        caller,
        UserRole.DOCTOR,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )
    return ApiResponse(data=result)


@router.post(
    "/",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def book_appointment(
    data: AppointmentCreate,
    caller: CurrentCaller,
    engine: Scheduler,
) -> ApiResponse[AppointmentResponse]:
    """
    Book a pending appointment with a doctor.

    Args:
        data: Doctor, slot and optional purpose/notes
        caller: Authenticated patient
        engine: Scheduling engine

    Returns:
        Created appointment with doctor and patient summaries
    """
    appointment = await engine.book(caller, data)
    return ApiResponse(message="Appointment booked successfully", data=appointment)


@router.put(
    "/{appointment_id}/accept",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Accept an appointment",
)
async def accept_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    engine: Scheduler,
) -> ApiResponse[AppointmentResponse]:
    """Confirm a pending appointment (assigned doctor only)."""
    appointment = await engine.accept(caller, appointment_id)
    return ApiResponse(message="Appointment accepted successfully.", data=appointment)


@router.patch(
    "/{appointment_id}/cancel",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Cancel an appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    engine: Scheduler,
    data: AppointmentCancel | None = Body(None),
) -> ApiResponse[AppointmentResponse]:
    """
    Cancel an appointment as its patient or doctor.

    Args:
        appointment_id: Appointment ID
        caller: Authenticated caller
        engine: Scheduling engine
        data: Optional cancellation reason

    Returns:
        Cancelled appointment
    """
    appointment = await engine.cancel(caller, appointment_id, data)
    return ApiResponse(message="Appointment cancelled successfully.", data=appointment)


@router.patch(
    "/{appointment_id}/complete",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Complete an appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    engine: Scheduler,
    data: AppointmentComplete | None = Body(None),
) -> ApiResponse[AppointmentResponse]:
    """Mark a confirmed appointment as completed, with optional notes and prescription."""
    appointment = await engine.complete(caller, appointment_id, data)
    return ApiResponse(message="Appointment marked as completed.", data=appointment)


@router.get(
    "/{appointment_id}",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    engine: Scheduler,
) -> ApiResponse[AppointmentResponse]:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        caller: Authenticated caller
        engine: Scheduling engine

    Returns:
        Appointment details

    Raises:
        HTTPException: If appointment not found or access denied
    """
    appointment = await engine.get_appointment(caller, appointment_id)
    return ApiResponse(data=appointment)
