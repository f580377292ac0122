"""Tests for health check endpoints."""

import pytest
from httpx import AsyncClient

from app.api.v1.endpoints import health
from app.config import settings


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test basic health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@pytest.mark.asyncio
async def test_ping(client: AsyncClient):
    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_detailed_health_degrades_without_redis(client: AsyncClient, monkeypatch):
    async def healthy() -> bool:
        return True

    async def down() -> bool:
        return False

    monkeypatch.setattr(health, "check_database_connection", healthy)
    monkeypatch.setattr(health, "check_redis_connection", down)

    response = await client.get("/api/v1/health/detailed")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["database"] == "healthy"
    assert data["redis"] == "unhealthy"
    # the lifespan does not run under the test transport, so no arq pool exists
    assert data["notifications"] == "unavailable"


@pytest.mark.asyncio
async def test_detailed_health_unhealthy_database(client: AsyncClient, monkeypatch):
    async def down() -> bool:
        return False

    monkeypatch.setattr(health, "check_database_connection", down)
    monkeypatch.setattr(health, "check_redis_connection", down)

    response = await client.get("/api/v1/health/detailed")
    assert response.json()["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


@pytest.mark.asyncio
async def test_error_envelope(client: AsyncClient, doctor_headers):
    response = await client.get("/api/v1/schedules/not-a-uuid", headers=doctor_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["path"].endswith("/api/v1/schedules/not-a-uuid")
    assert set(body) >= {"error", "message", "path"}
