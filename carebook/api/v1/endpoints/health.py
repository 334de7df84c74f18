"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from carebook.config import settings
from carebook.core.redis_client import check_redis_connection
from carebook.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class SchedulingRulesInfo(BaseModel):
    """Scheduling rules the running instance enforces."""

    conflict_window_minutes: int
    patient_cancel_notice_hours: float
    doctor_cancel_notice_hours: float


class DetailedHealthResponse(HealthResponse):
    """Detailed health check response model."""

    database: str
    directory_cache: str
    scheduling: SchedulingRulesInfo


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Basic liveness check, touches no dependency."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Readiness check covering the appointment database and the directory cache.

    The cache is optional: when it is down the service is still reported
    healthy because directory lookups fall back to the database.

    Returns:
        Health status including dependencies and active scheduling rules
    """
    db_healthy = await check_database_connection()

    if not settings.cache_enabled:
        cache_state = "disabled"
    elif await check_redis_connection():
        cache_state = "healthy"
    else:
        cache_state = "unhealthy"

    return DetailedHealthResponse(
        status="healthy" if db_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        directory_cache=cache_state,
        scheduling=SchedulingRulesInfo(
            conflict_window_minutes=settings.conflict_window_minutes,
            patient_cancel_notice_hours=settings.patient_cancel_notice_hours,
            doctor_cancel_notice_hours=settings.doctor_cancel_notice_hours,
        ),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
