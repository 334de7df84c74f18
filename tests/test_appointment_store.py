"""
Integration tests for the PostgreSQL appointment store.

These run only when TEST_DATABASE_URL points at a disposable database; the
tables are dropped and recreated for every test.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from carebook.config import settings
from carebook.core.exceptions import ConflictException
from carebook.models import metadata, users
from carebook.models.appointments import no_overlap_constraint_ddl
from carebook.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilter,
    AppointmentStatus,
)
from carebook.schemas.users import Caller, UserRole
from carebook.services.appointment_store import AppointmentStore
from carebook.services.directory_service import DirectoryService
from carebook.services.scheduling_engine import SchedulingEngine, SchedulingRules
from conftest import FrozenClock, utc

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

if not TEST_DATABASE_URL:
    pytest.skip("TEST_DATABASE_URL not set", allow_module_level=True)

if not TEST_DATABASE_URL.startswith("postgresql+asyncpg://"):
    TEST_DATABASE_URL = TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

# Use NullPool to avoid event loop issues between tests
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on freshly created tables."""
    async with test_engine.begin() as conn:
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "btree_gist"'))
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)
        await conn.execute(text(no_overlap_constraint_ddl(settings.conflict_window_minutes)))

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


async def add_user(session: AsyncSession, role: str, full_name: str) -> dict:
    values = {
        "id": uuid4(),
        "full_name": full_name,
        "email": f"{uuid4().hex[:8]}@example.com",
        "role": role,
    }
    await session.execute(insert(users).values(**values))
    await session.commit()
    return values


def new_row(patient: dict, doctor: dict, when: str, **extra) -> dict:
    return {
        "patient_id": patient["id"],
        "doctor_id": doctor["id"],
        "scheduled_at": utc(when),
        "purpose": "General Consultation",
        "notes": "",
        "status": AppointmentStatus.PENDING,
        **extra,
    }


@pytest_asyncio.fixture
async def people(db_session: AsyncSession) -> dict:
    return {
        "doctor": await add_user(db_session, "doctor", "Dr. Asha Menon"),
        "patient": await add_user(db_session, "patient", "Jordan Patel"),
    }


@pytest.mark.asyncio
async def test_create_and_find(db_session: AsyncSession, people: dict) -> None:
    """Test stored rows come back as appointments with enum fields."""
    store = AppointmentStore(db_session)

    created = await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:00:00Z"))
    found = await store.find_by_id(created.id)

    assert found == created
    assert found.status == AppointmentStatus.PENDING
    assert found.scheduled_at == utc("2025-06-01T10:00:00Z")
    assert await store.find_by_id(uuid4()) is None


@pytest.mark.asyncio
async def test_find_conflict_window_edges(db_session: AsyncSession, people: dict) -> None:
    """Test the conflict search is inclusive at both edges and skips inactive rows."""
    store = AppointmentStore(db_session)
    doctor, patient = people["doctor"], people["patient"]
    active = await store.create(new_row(patient, doctor, "2025-06-01T10:00:00Z"))
    await store.create(
        new_row(patient, doctor, "2025-06-01T12:00:00Z", status=AppointmentStatus.CANCELLED)
    )
    window = timedelta(minutes=30)

    edge = await store.find_conflict(doctor["id"], utc("2025-06-01T10:30:00Z"), window)
    clear = await store.find_conflict(doctor["id"], utc("2025-06-01T10:31:00Z"), window)
    cancelled = await store.find_conflict(doctor["id"], utc("2025-06-01T12:00:00Z"), window)
    itself = await store.find_conflict(
        doctor["id"], active.scheduled_at, window, exclude_id=active.id
    )

    assert edge.id == active.id
    assert clear is None
    assert cancelled is None
    assert itself is None


@pytest.mark.asyncio
async def test_conditional_update_guards_status(db_session: AsyncSession, people: dict) -> None:
    """Test the update applies only while the expected status holds."""
    store = AppointmentStore(db_session)
    created = await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:00:00Z"))

    confirmed = await store.conditional_update(
        created.id, AppointmentStatus.PENDING, {"status": AppointmentStatus.CONFIRMED}
    )
    stale = await store.conditional_update(
        created.id, AppointmentStatus.PENDING, {"status": AppointmentStatus.CANCELLED}
    )

    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.updated_at >= created.updated_at
    assert stale is None
    assert (await store.find_by_id(created.id)).status == AppointmentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_paginated_find(db_session: AsyncSession, people: dict) -> None:
    """Test filtering, newest-first ordering and page counts."""
    store = AppointmentStore(db_session)
    for day in range(1, 6):
        await store.create(new_row(people["patient"], people["doctor"], f"2025-06-0{day}T10:00:00Z"))

    page = await store.paginated_find(
        AppointmentFilter(
            doctor_id=people["doctor"]["id"],
            scheduled_from=utc("2025-06-02T00:00:00Z"),
            page=1,
            limit=3,
        )
    )

    assert page.total == 4
    assert page.pages == 2
    assert [a.scheduled_at.day for a in page.items] == [5, 4, 3]


@pytest.mark.asyncio
async def test_exclusion_constraint_rejects_overlap(db_session: AsyncSession, people: dict) -> None:
    """Test the database refuses overlapping active rows written past the engine."""
    store = AppointmentStore(db_session)
    await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:00:00Z"))

    with pytest.raises(ConflictException):
        await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:25:00Z"))


@pytest.mark.asyncio
async def test_concurrent_bookings_serialise_on_doctor_lock(
    db_session: AsyncSession, people: dict
) -> None:
    """Test two sessions booking overlapping slots yield exactly one appointment."""
    second_patient = await add_user(db_session, "patient", "Riley Chen")
    clock = FrozenClock(utc("2025-05-20T09:00:00Z"))

    async def attempt(patient: dict, when: str):
        async with TestSessionLocal() as session:
            engine = SchedulingEngine(
                AppointmentStore(session),
                DirectoryService(session),
                rules=SchedulingRules(),
                clock=clock,
            )
            return await engine.book(
                Caller(user_id=patient["id"], role=UserRole.PATIENT),
                AppointmentCreate(doctor_id=people["doctor"]["id"], scheduled_at=utc(when)),
            )

    results = await asyncio.gather(
        attempt(people["patient"], "2025-06-01T10:00:00Z"),
        attempt(second_patient, "2025-06-01T10:10:00Z"),
        return_exceptions=True,
    )

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert sum(isinstance(r, ConflictException) for r in results) == 1


@pytest.mark.asyncio
async def test_exclusion_constraint_matches_conflict_window(
    db_session: AsyncSession, people: dict
) -> None:
    """Test the constraint refuses a row at the window edge and admits one just past it."""
    store = AppointmentStore(db_session)
    await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:00:00Z"))
    await db_session.commit()

    with pytest.raises(ConflictException):
        await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:30:00Z"))
    await db_session.rollback()

    clear = await store.create(new_row(people["patient"], people["doctor"], "2025-06-01T10:31:00Z"))

    assert clear.scheduled_at == utc("2025-06-01T10:31:00Z")
