"""Tests for schedule, blocked slot and availability endpoints."""

from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient


def _window(doctor_id: str, **overrides) -> dict:
    data = {
        "doctor_id": doctor_id,
        "day_of_week": 1,
        "start_time": "09:00",
        "end_time": "12:00",
        "slot_duration": 30,
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_create_schedule(client: AsyncClient, doctor_id, doctor_headers) -> None:
    response = await client.post(
        "/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers
    )

    assert response.status_code == 201
    data = response.json()
    assert data["doctor_id"] == doctor_id
    assert data["is_active"] is True
    assert data["blocked_slots"] == []


@pytest.mark.asyncio
async def test_create_overlapping_schedule_conflicts(
    client: AsyncClient, doctor_id, doctor_headers
) -> None:
    await client.post("/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers)

    response = await client.post(
        "/api/v1/schedules/",
        json=_window(doctor_id, start_time="11:30", end_time="13:00"),
        headers=doctor_headers,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SCHEDULE_OVERLAP"

    # touching windows do not overlap
    response = await client.post(
        "/api/v1/schedules/",
        json=_window(doctor_id, start_time="12:00", end_time="13:00"),
        headers=doctor_headers,
    )
    assert response.status_code == 201


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"start_time": "9:00"}, "INVALID_TIME_FORMAT"),
        ({"end_time": "25:00"}, "INVALID_TIME_FORMAT"),
        ({"start_time": "12:00", "end_time": "09:00"}, "INVALID_TIME_RANGE"),
        ({"start_time": "09:00", "end_time": "09:00"}, "INVALID_TIME_RANGE"),
    ],
)
async def test_create_schedule_rejects_bad_times(
    client: AsyncClient, doctor_id, doctor_headers, overrides, code
) -> None:
    response = await client.post(
        "/api/v1/schedules/", json=_window(doctor_id, **overrides), headers=doctor_headers
    )
    assert response.status_code == 400
    assert response.json()["code"] == code


@pytest.mark.asyncio
async def test_schedule_permissions(
    client: AsyncClient, doctor_id, doctor_headers, patient_headers, admin_headers
) -> None:
    response = await client.post(
        "/api/v1/schedules/", json=_window(str(uuid4())), headers=doctor_headers
    )
    assert response.status_code == 403

    response = await client.post(
        "/api/v1/schedules/", json=_window(doctor_id), headers=patient_headers
    )
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"

    response = await client.post(
        "/api/v1/schedules/", json=_window(doctor_id), headers=admin_headers
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_schedules_require_authentication(client: AsyncClient, doctor_id) -> None:
    response = await client.post("/api/v1/schedules/", json=_window(doctor_id))
    assert response.status_code in (401, 403)

    response = await client.post(
        "/api/v1/schedules/",
        json=_window(doctor_id),
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_and_get_schedules(client: AsyncClient, doctor_id, doctor_headers) -> None:
    created = (
        await client.post("/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers)
    ).json()
    await client.post(
        "/api/v1/schedules/",
        json=_window(doctor_id, day_of_week=3),
        headers=doctor_headers,
    )

    response = await client.get(f"/api/v1/schedules/doctor/{doctor_id}", headers=doctor_headers)
    assert response.status_code == 200
    assert [s["day_of_week"] for s in response.json()] == [1, 3]

    response = await client.get(f"/api/v1/schedules/{created['id']}", headers=doctor_headers)
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    response = await client.get(f"/api/v1/schedules/{uuid4()}", headers=doctor_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "SCHEDULE_NOT_FOUND"


@pytest.mark.asyncio
async def test_update_checks_overlap_on_effective_day(
    client: AsyncClient, doctor_id, doctor_headers
) -> None:
    monday = (
        await client.post("/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers)
    ).json()
    await client.post(
        "/api/v1/schedules/",
        json=_window(doctor_id, day_of_week=2, start_time="10:00", end_time="11:00"),
        headers=doctor_headers,
    )

    response = await client.put(
        f"/api/v1/schedules/{monday['id']}", json={"day_of_week": 2}, headers=doctor_headers
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SCHEDULE_OVERLAP"

    response = await client.put(
        f"/api/v1/schedules/{monday['id']}",
        json={"end_time": "10:00", "slot_duration": 15},
        headers=doctor_headers,
    )
    assert response.status_code == 200
    assert response.json()["end_time"] == "10:00"
    assert response.json()["slot_duration"] == 15


@pytest.mark.asyncio
async def test_delete_schedule_is_soft(client: AsyncClient, doctor_id, doctor_headers) -> None:
    created = (
        await client.post("/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers)
    ).json()

    response = await client.delete(f"/api/v1/schedules/{created['id']}", headers=doctor_headers)
    assert response.status_code == 204

    listed = (
        await client.get(f"/api/v1/schedules/doctor/{doctor_id}", headers=doctor_headers)
    ).json()
    assert len(listed) == 1
    assert listed[0]["is_active"] is False

    # an inactive window no longer blocks a new one
    response = await client.post(
        "/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_blocked_slots_lifecycle(
    client: AsyncClient, doctor_id, doctor_headers, patient_headers, monday_9am
) -> None:
    schedule = (
        await client.post("/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers)
    ).json()
    day = monday_9am.date().isoformat()

    response = await client.post(
        f"/api/v1/schedules/{schedule['id']}/blocked-slots",
        json={"blocked_date": day, "start_time": "10:00", "end_time": "11:00", "reason": "Junta"},
        headers=doctor_headers,
    )
    assert response.status_code == 201
    blocked = response.json()

    slots = (
        await client.get(
            "/api/v1/schedules/available",
            params={"doctor_id": doctor_id, "date": day},
            headers=patient_headers,
        )
    ).json()
    reasons = {slot["time"]: slot["reason"] for slot in slots}
    assert reasons["10:00"] == "BLOCKED"
    assert reasons["10:30"] == "BLOCKED"
    assert reasons["11:00"] is None

    response = await client.delete(
        f"/api/v1/schedules/blocked-slots/{blocked['id']}", headers=doctor_headers
    )
    assert response.status_code == 204

    response = await client.delete(
        f"/api/v1/schedules/blocked-slots/{blocked['id']}", headers=doctor_headers
    )
    assert response.status_code == 404
    assert response.json()["code"] == "BLOCKED_SLOT_NOT_FOUND"


@pytest.mark.asyncio
async def test_blocked_slot_must_fall_on_schedule_weekday(
    client: AsyncClient, doctor_id, doctor_headers, monday_9am
) -> None:
    schedule = (
        await client.post("/api/v1/schedules/", json=_window(doctor_id), headers=doctor_headers)
    ).json()
    tuesday = monday_9am.date() + timedelta(days=1)

    response = await client.post(
        f"/api/v1/schedules/{schedule['id']}/blocked-slots",
        json={
            "blocked_date": tuesday.isoformat(),
            "start_time": "10:00",
            "end_time": "11:00",
        },
        headers=doctor_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "BLOCKED_DATE_MISMATCH"


@pytest.mark.asyncio
async def test_availability_without_schedule_is_empty(
    client: AsyncClient, doctor_id, patient_headers, monday_9am
) -> None:
    response = await client.get(
        "/api/v1/schedules/available",
        params={"doctor_id": doctor_id, "date": monday_9am.date().isoformat()},
        headers=patient_headers,
    )
    assert response.status_code == 200
    assert response.json() == []
