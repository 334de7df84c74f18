"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.core.redis_client import CacheManager, get_cache_manager
from carebook.core.security import decode_access_token
from carebook.database import get_db
from carebook.schemas.users import Caller, UserRole
from carebook.services.appointment_store import AppointmentStore
from carebook.services.directory_service import DirectoryService
from carebook.services.scheduling_engine import SchedulingEngine

# Security
security = HTTPBearer(auto_error=False)


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Caller:
    """
    Extract the caller identity from the bearer token.

    The token is trusted as-is once its signature and expiry check out; no
    directory lookup happens here.

    Args:
        credentials: Bearer token credentials

    Returns:
        Caller with user ID and role

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise _credentials_error("Not authorized, no token provided")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    role_str = payload.get("role")
    if not isinstance(user_id_str, str) or not isinstance(role_str, str):
        raise _credentials_error()

    try:
        return Caller(user_id=UUID(user_id_str), role=UserRole(role_str))
    except ValueError:
        raise _credentials_error("Invalid token claims")


def get_directory_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
) -> DirectoryService:
    """Directory service bound to the request's database session."""
    return DirectoryService(db, cache_manager=cache)


def get_scheduling_engine(
    db: Annotated[AsyncSession, Depends(get_db)],
    directory: Annotated[DirectoryService, Depends(get_directory_service)],
) -> SchedulingEngine:
    """Scheduling engine bound to the request's database session."""
    return SchedulingEngine(AppointmentStore(db), directory)


# Type aliases for dependency injection
CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
Directory = Annotated[DirectoryService, Depends(get_directory_service)]
Scheduler = Annotated[SchedulingEngine, Depends(get_scheduling_engine)]
