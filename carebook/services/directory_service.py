"""Directory service: user lookups for identity checks and display."""

import math
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config import settings
from carebook.core.exceptions import NotFoundException
from carebook.core.redis_client import CacheManager
from carebook.database import execute_with_timeout
from carebook.models.users import users
from carebook.schemas.users import (
    DirectoryUser,
    DoctorFilters,
    DoctorListResponse,
    DoctorProfile,
    UserRole,
)


class DirectoryService:
    """Service for directory (user) operations."""

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        timeout: float | None = None,
    ):
        """Initialize service with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager
        self.timeout = timeout

    @staticmethod
    def _get_user_cache_key(user_id: UUID) -> str:
        """Generate cache key for user."""
        return f"user:{user_id}"

    async def _execute(self, statement):
        return await execute_with_timeout(
            self.db, statement, timeout=self.timeout, store="user directory"
        )

    async def find_user(self, user_id: UUID, fresh: bool = False) -> DirectoryUser | None:
        """
        Get user by ID with caching.

        With ``fresh`` the cache is not read; the database row is fetched and
        the cached entry refreshed, or dropped if the user no longer exists.
        """
        cache_key = self._get_user_cache_key(user_id)

        # Try cache first
        if self.cache and not fresh:
            cached_user = self.cache.get_json(cache_key)
            if cached_user:
                return DirectoryUser.model_validate(cached_user)

        # Query database
        query = select(users).where(users.c.id == user_id)
        result = await self._execute(query)
        row = result.mappings().first()

        if not row:
            if self.cache and fresh:
                self.cache.delete(cache_key)
            return None

        user = DirectoryUser.model_validate(dict(row))

        # Cache the result
        if self.cache:
            self.cache.set_json(
                cache_key,
                user.model_dump(mode="json"),
                ttl=settings.directory_cache_ttl_seconds,
            )

        return user

    async def find_users(self, user_ids: Iterable[UUID]) -> dict[UUID, DirectoryUser]:
        """Get several users at once, keyed by ID. Unknown IDs are left out."""
        wanted = set(user_ids)
        if not wanted:
            return {}

        query = select(users).where(users.c.id.in_(wanted))
        result = await self._execute(query)
        found = [DirectoryUser.model_validate(dict(row)) for row in result.mappings().all()]
        return {user.id: user for user in found}

    async def list_doctors(self, filters: DoctorFilters) -> DoctorListResponse:
        """List active doctors, optionally narrowed by specialization."""
        conditions = [
            users.c.role == UserRole.DOCTOR.value,
            users.c.is_active.is_(True),
        ]
        if filters.specialization:
            conditions.append(users.c.specialization.ilike(f"%{filters.specialization}%"))

        count_stmt = select(func.count()).select_from(users).where(and_(*conditions))
        total_result = await self._execute(count_stmt)
        total = total_result.scalar() or 0

        stmt = (
            select(users)
            .where(and_(*conditions))
            .order_by(users.c.full_name)
            .limit(filters.limit)
            .offset((filters.page - 1) * filters.limit)
        )
        result = await self._execute(stmt)
        items = [DoctorProfile.model_validate(dict(row)) for row in result.mappings().all()]

        return DoctorListResponse(
            items=items,
            total=total,
            pages=max(1, math.ceil(total / filters.limit)),
            page=filters.page,
            limit=filters.limit,
        )

    async def get_doctor(self, doctor_id: UUID) -> DoctorProfile:
        """
        Get a doctor's public profile.

        Raises:
            NotFoundException: If no active doctor has this ID
        """
        user = await self.find_user(doctor_id)
        if user is None or user.role != UserRole.DOCTOR or not user.is_active:
            raise NotFoundException("Doctor not found.", details={"doctor_id": str(doctor_id)})
        return DoctorProfile.model_validate(user.model_dump())
