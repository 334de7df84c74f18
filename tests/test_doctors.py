"""Tests for doctor directory endpoints."""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from carebook.schemas.users import UserRole


@pytest.mark.asyncio
async def test_list_doctors(client: AsyncClient, auth_headers, patient, doctor, other_doctor) -> None:
    """Test listing active doctors sorted by name."""
    response = await client.get("/api/v1/doctors/", headers=auth_headers(patient))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert [d["full_name"] for d in data["items"]] == ["Dr. Asha Menon", "Dr. Tomas Lindqvist"]


@pytest.mark.asyncio
async def test_list_doctors_by_specialization(
    client: AsyncClient, auth_headers, patient, doctor, other_doctor
) -> None:
    """Test specialization matching is a case-insensitive substring."""
    response = await client.get(
        "/api/v1/doctors/",
        params={"specialization": "cardio"},
        headers=auth_headers(patient),
    )

    items = response.json()["data"]["items"]
    assert [d["id"] for d in items] == [str(doctor.id)]


@pytest.mark.asyncio
async def test_list_doctors_skips_inactive(
    client: AsyncClient, auth_headers, directory, patient, doctor
) -> None:
    """Test inactive doctors are hidden."""
    directory.add(UserRole.DOCTOR, "Dr. Retired", is_active=False)

    response = await client.get("/api/v1/doctors/", headers=auth_headers(patient))

    assert response.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_list_doctors_invalid_limit(client: AsyncClient, auth_headers, patient) -> None:
    """Test page size outside 1..100 is rejected."""
    response = await client.get(
        "/api/v1/doctors/", params={"limit": 500}, headers=auth_headers(patient)
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_get_doctor(client: AsyncClient, auth_headers, patient, doctor) -> None:
    """Test fetching one doctor's profile."""
    response = await client.get(f"/api/v1/doctors/{doctor.id}", headers=auth_headers(patient))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["full_name"] == "Dr. Asha Menon"
    assert data["specialization"] == "Cardiology"


@pytest.mark.asyncio
async def test_get_doctor_not_found(client: AsyncClient, auth_headers, patient) -> None:
    """Test unknown doctors and non-doctor users are not found."""
    missing = await client.get(f"/api/v1/doctors/{uuid4()}", headers=auth_headers(patient))
    not_doctor = await client.get(f"/api/v1/doctors/{patient.id}", headers=auth_headers(patient))

    assert missing.status_code == 404
    assert not_doctor.status_code == 404


@pytest.mark.asyncio
async def test_doctors_require_auth(client: AsyncClient) -> None:
    """Test that the directory requires authentication."""
    response = await client.get("/api/v1/doctors/")

    assert response.status_code == 401
