import asyncio
import os
from collections import defaultdict
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient

# Load environment variables from .env file
load_dotenv()

# The API tests never touch Redis
os.environ.setdefault("CACHE_ENABLED", "false")

from carebook.core.security import create_access_token  # noqa: E402
from carebook.dependencies import get_directory_service, get_scheduling_engine  # noqa: E402
from carebook.main import app  # noqa: E402
from carebook.schemas.appointments import (  # noqa: E402
    ACTIVE_STATUSES,
    Appointment,
    AppointmentFilter,
    AppointmentPage,
    AppointmentStatus,
)
from carebook.schemas.users import (  # noqa: E402
    DirectoryUser,
    DoctorFilters,
    DoctorListResponse,
    DoctorProfile,
    UserRole,
)
from carebook.services.directory_service import DirectoryService  # noqa: E402
from carebook.services.scheduling_engine import SchedulingEngine, SchedulingRules  # noqa: E402


def utc(value: str) -> datetime:
    """Parse an ISO timestamp ending in Z into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FrozenClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: str) -> None:
        self.now = utc(value)

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryAppointmentStore:
    """
    Appointment store double.

    ``transaction(lock_doctor_id=...)`` serialises on a per-doctor
    ``asyncio.Lock`` like the row lock of the real store, and every call
    yields to the event loop so concurrent callers really interleave.
    """

    def __init__(self) -> None:
        self.rows: dict[UUID, Appointment] = {}
        self._locks: dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def transaction(self, lock_doctor_id: UUID | None = None) -> AsyncIterator[None]:
        if lock_doctor_id is None:
            yield
            return
        async with self._locks[lock_doctor_id]:
            yield

    async def create(self, values: dict[str, Any]) -> Appointment:
        await asyncio.sleep(0)
        now = datetime.now(UTC)
        appointment = Appointment(id=uuid4(), created_at=now, updated_at=now, **values)
        self.rows[appointment.id] = appointment
        return appointment

    async def find_by_id(self, appointment_id: UUID) -> Appointment | None:
        await asyncio.sleep(0)
        return self.rows.get(appointment_id)

    async def find_conflict(
        self,
        doctor_id: UUID,
        scheduled_at: datetime,
        window: timedelta,
        exclude_id: UUID | None = None,
    ) -> Appointment | None:
        await asyncio.sleep(0)
        matches = [
            a
            for a in self.rows.values()
            if a.doctor_id == doctor_id
            and a.id != exclude_id
            and a.status in ACTIVE_STATUSES
            and scheduled_at - window <= a.scheduled_at <= scheduled_at + window
        ]
        return min(matches, key=lambda a: a.scheduled_at) if matches else None

    async def conditional_update(
        self,
        appointment_id: UUID,
        expected_status: AppointmentStatus,
        patch: dict[str, Any],
    ) -> Appointment | None:
        await asyncio.sleep(0)
        current = self.rows.get(appointment_id)
        if current is None or current.status != expected_status:
            return None
        updated = current.model_copy(update={**patch, "updated_at": datetime.now(UTC)})
        self.rows[appointment_id] = updated
        return updated

    async def paginated_find(self, filters: AppointmentFilter) -> AppointmentPage:
        await asyncio.sleep(0)
        matches = [
            a
            for a in self.rows.values()
            if (filters.patient_id is None or a.patient_id == filters.patient_id)
            and (filters.doctor_id is None or a.doctor_id == filters.doctor_id)
            and (filters.status is None or a.status == filters.status)
            and (filters.scheduled_from is None or a.scheduled_at >= filters.scheduled_from)
            and (filters.scheduled_to is None or a.scheduled_at <= filters.scheduled_to)
        ]
        matches.sort(key=lambda a: a.scheduled_at, reverse=True)
        start = (filters.page - 1) * filters.limit
        total = len(matches)
        return AppointmentPage(
            items=matches[start : start + filters.limit],
            total=total,
            pages=max(1, -(-total // filters.limit)),
            page=filters.page,
            limit=filters.limit,
        )


class InMemoryDirectory(DirectoryService):
    """Directory double backed by a dict; profile lookups reuse the real service."""

    def __init__(self) -> None:
        super().__init__(db=None)  # type: ignore[arg-type]
        self.users: dict[UUID, DirectoryUser] = {}

    def add(self, role: UserRole, full_name: str, **fields: Any) -> DirectoryUser:
        user_id = uuid4()
        user = DirectoryUser(
            id=user_id,
            full_name=full_name,
            email=fields.pop("email", f"{user_id.hex[:8]}@example.com"),
            role=role,
            **fields,
        )
        self.users[user.id] = user
        return user

    async def find_user(self, user_id: UUID, fresh: bool = False) -> DirectoryUser | None:
        return self.users.get(user_id)

    async def find_users(self, user_ids: Iterable[UUID]) -> dict[UUID, DirectoryUser]:
        return {uid: self.users[uid] for uid in set(user_ids) if uid in self.users}

    async def list_doctors(self, filters: DoctorFilters) -> DoctorListResponse:
        doctors = sorted(
            (
                u
                for u in self.users.values()
                if u.role == UserRole.DOCTOR
                and u.is_active
                and (
                    not filters.specialization
                    or filters.specialization.lower() in (u.specialization or "").lower()
                )
            ),
            key=lambda u: u.full_name,
        )
        start = (filters.page - 1) * filters.limit
        return DoctorListResponse(
            items=[
                DoctorProfile.model_validate(u.model_dump())
                for u in doctors[start : start + filters.limit]
            ],
            total=len(doctors),
            pages=max(1, -(-len(doctors) // filters.limit)),
            page=filters.page,
            limit=filters.limit,
        )


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen well ahead of the 2025-06-01 slots used in the tests."""
    return FrozenClock(utc("2025-05-20T09:00:00Z"))


@pytest.fixture
def store() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore()


@pytest.fixture
def directory() -> InMemoryDirectory:
    return InMemoryDirectory()


@pytest.fixture
def doctor(directory: InMemoryDirectory) -> DirectoryUser:
    return directory.add(
        UserRole.DOCTOR,
        "Dr. Asha Menon",
        phone="+15550100",
        specialization="Cardiology",
    )


@pytest.fixture
def other_doctor(directory: InMemoryDirectory) -> DirectoryUser:
    return directory.add(UserRole.DOCTOR, "Dr. Tomas Lindqvist", specialization="Dermatology")


@pytest.fixture
def patient(directory: InMemoryDirectory) -> DirectoryUser:
    return directory.add(UserRole.PATIENT, "Jordan Patel", email="jordan@example.com")


@pytest.fixture
def other_patient(directory: InMemoryDirectory) -> DirectoryUser:
    return directory.add(UserRole.PATIENT, "Riley Chen")


@pytest.fixture
def admin(directory: InMemoryDirectory) -> DirectoryUser:
    return directory.add(UserRole.ADMIN, "Site Admin")


@pytest.fixture
def engine(
    store: InMemoryAppointmentStore,
    directory: InMemoryDirectory,
    clock: FrozenClock,
) -> SchedulingEngine:
    return SchedulingEngine(store, directory, rules=SchedulingRules(), clock=clock)


@pytest_asyncio.fixture
async def client(
    engine: SchedulingEngine,
    directory: InMemoryDirectory,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client wired to the in-memory engine."""
    app.dependency_overrides[get_scheduling_engine] = lambda: engine
    app.dependency_overrides[get_directory_service] = lambda: directory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[DirectoryUser], dict]:
    """Build bearer headers for a directory user."""

    def _headers(user: DirectoryUser) -> dict:
        token = create_access_token(
            data={"sub": str(user.id), "role": user.role.value},
            expires_delta=timedelta(minutes=30),
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
