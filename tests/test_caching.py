"""Tests for Redis caching and the cached users service lookups."""

from unittest.mock import MagicMock

import httpx
import pytest

from app.core.exceptions import UpstreamUnavailableException
from app.core.redis_client import CacheManager
from app.services.user_directory import UserDirectoryClient


def test_cache_manager_get_json():
    """Test CacheManager get_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    assert cache_manager.get_json("directory:user:1") is None
    mock_redis.get.assert_called_once_with("directory:user:1")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = '{"email": "ana@example.com", "full_name": "Ana"}'
    assert cache_manager.get_json("directory:user:1") == {
        "email": "ana@example.com",
        "full_name": "Ana",
    }


def test_cache_manager_set_json():
    """Test CacheManager set_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.set_json("key", {"a": 1}) is True
    mock_redis.set.assert_called_once()

    mock_redis.reset_mock()
    assert cache_manager.set_json("key", {"a": 1}, ttl=300) is True
    mock_redis.setex.assert_called_once_with("key", 300, '{"a": 1}')


def test_cache_manager_fails_open():
    """A Redis outage reads as a miss and writes report failure."""
    mock_redis = MagicMock()
    mock_redis.get.side_effect = ConnectionError("redis down")
    mock_redis.set.side_effect = ConnectionError("redis down")
    mock_redis.delete.side_effect = ConnectionError("redis down")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.get_json("key") is None
    assert cache_manager.set_json("key", {"a": 1}) is False
    assert cache_manager.delete("key") is False


def _patient_payload(patient_id: str, user_id: str) -> dict:
    return {
        "patient": {
            "id": patient_id,
            "userId": user_id,
            "status": "ACTIVE",
            "user": {"email": "ana@example.com", "firstName": "Ana", "lastName": "Pérez"},
        }
    }


@pytest.mark.asyncio
async def test_patient_lookup_is_cached():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json=_patient_payload("p-1", "u-1"))

    store: dict[str, str] = {}
    mock_redis = MagicMock()
    mock_redis.get.side_effect = store.get
    mock_redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)

    directory = UserDirectoryClient(
        base_url="http://users.test",
        cache_manager=CacheManager(mock_redis),
        transport=httpx.MockTransport(handler),
    )

    first = await directory.get_patient_contact_by_patient_id("p-1")
    second = await directory.get_patient_contact_by_patient_id("p-1")

    assert first == second
    assert first.full_name == "Ana Pérez"
    assert first.user_id == "u-1"
    assert first.is_active
    assert calls == ["/api/v1/users/patients/p-1"]
    assert "directory:patient:p-1" in store


@pytest.mark.asyncio
async def test_patient_lookup_falls_through_candidates():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/patients/p-1":
            return httpx.Response(200, json={"data": _patient_payload("p-1", "u-1")["patient"]})
        return httpx.Response(404)

    directory = UserDirectoryClient(
        base_url="http://users.test", transport=httpx.MockTransport(handler)
    )
    contact = await directory.get_patient_contact_by_patient_id("p-1", required=True)
    assert contact.email == "ana@example.com"

    missing = UserDirectoryClient(
        base_url="http://users.test", transport=httpx.MockTransport(lambda r: httpx.Response(404))
    )
    assert await missing.get_patient_contact_by_patient_id("p-1", required=True) is None


@pytest.mark.asyncio
async def test_unreachable_directory():
    directory = UserDirectoryClient(
        base_url="http://users.test",
        transport=httpx.MockTransport(lambda r: httpx.Response(503)),
    )

    assert await directory.get_patient_contact_by_patient_id("p-1") is None
    with pytest.raises(UpstreamUnavailableException) as exc_info:
        await directory.get_patient_contact_by_patient_id("p-1", required=True)
    assert exc_info.value.code == "USER_DIRECTORY_UNAVAILABLE"

    # optional lookups degrade quietly
    assert await directory.get_contact_by_user_id("u-1") is None
    assert await directory.doctor_has_specialty("d-1", "s-1") is False
    assert await directory.resolve_patient_ids_by_name("Ana") == []


@pytest.mark.asyncio
async def test_doctor_specialty_lookup():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/users/doctors/d-1":
            return httpx.Response(
                200, json={"doctor": {"id": "d-1", "affiliations": [{"specialtyId": "s-1"}]}}
            )
        if request.url.path == "/api/v1/users/doctors-with-affiliations":
            return httpx.Response(
                200,
                json={
                    "doctors": [
                        {"id": "d-2", "userDeptRoles": [{"specialty": {"id": "s-2"}}]},
                    ]
                },
            )
        return httpx.Response(404)

    directory = UserDirectoryClient(
        base_url="http://users.test", transport=httpx.MockTransport(handler)
    )

    assert await directory.doctor_has_specialty("d-1", "s-1") is True
    assert await directory.doctor_has_specialty("d-2", "s-2") is True
    assert await directory.doctor_has_specialty("d-2", "s-1") is False


@pytest.mark.asyncio
async def test_resolve_patient_ids_by_name():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "Ana"
        assert request.url.params["role"] == "PACIENTE"
        assert request.headers["Authorization"] == "Bearer abc"
        return httpx.Response(200, json={"users": [{"id": "u-1"}, {"id": "u-2"}, {}]})

    directory = UserDirectoryClient(
        base_url="http://users.test",
        auth_header="Bearer abc",
        transport=httpx.MockTransport(handler),
    )
    assert await directory.resolve_patient_ids_by_name("Ana") == ["u-1", "u-2"]
    assert await directory.resolve_patient_ids_by_name(None) == []
