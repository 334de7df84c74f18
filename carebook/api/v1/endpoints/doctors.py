"""Doctor directory endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from carebook.dependencies import CurrentCaller, Directory
from carebook.schemas.common import ApiResponse
from carebook.schemas.users import DoctorFilters, DoctorListResponse, DoctorProfile

router = APIRouter()


@router.get(
    "/",
    response_model=ApiResponse[DoctorListResponse],
    status_code=status.HTTP_200_OK,
    summary="List doctors",
)
async def list_doctors(
    caller: CurrentCaller,
    directory: Directory,
    specialization: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> ApiResponse[DoctorListResponse]:
    """
    List active doctors so patients can pick one to book.

    Args:
        caller: Authenticated caller
        directory: Directory service
        specialization: Case-insensitive substring match on specialization
        page: Page number
        limit: Items per page

    Returns:
        Paginated list of doctors
    """
    filters = DoctorFilters(specialization=specialization, page=page, limit=limit)
    return ApiResponse(data=await directory.list_doctors(filters))


@router.get(
    "/{doctor_id}",
    response_model=ApiResponse[DoctorProfile],
    status_code=status.HTTP_200_OK,
    summary="Get doctor by ID",
)
async def get_doctor(
    doctor_id: UUID,
    caller: CurrentCaller,
    directory: Directory,
) -> ApiResponse[DoctorProfile]:
    """Get a doctor's public profile."""
    return ApiResponse(data=await directory.get_doctor(doctor_id))
