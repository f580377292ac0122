"""Client for the sibling users service (contacts, patients, specialties)."""

from typing import Any

import httpx
import structlog

from app.config import settings
from app.core.exceptions import UpstreamUnavailableException
from app.core.redis_client import CacheManager
from app.schemas.directory import Contact, PatientContact, Specialty

logger = structlog.get_logger(__name__)


class DirectoryLookupFailed(Exception):
    """The users service could not be reached or answered with a server error."""


def _normalize_contact(obj: dict[str, Any] | None) -> Contact | None:
    if not obj:
        return None
    first = obj.get("firstName") or obj.get("first_name")
    last = obj.get("lastName") or obj.get("last_name")
    full_name = (
        obj.get("fullname")
        or obj.get("fullName")
        or " ".join(part for part in (first, last) if part)
        or obj.get("name")
    )
    return Contact(email=obj.get("email"), full_name=full_name or None)


def _has_specialty(doctor: dict[str, Any], specialty_id: str) -> bool:
    affiliations = doctor.get("affiliations") or doctor.get("userDeptRoles") or []
    for affiliation in affiliations:
        nested = affiliation.get("specialty") or {}
        if affiliation.get("specialtyId") == specialty_id or nested.get("id") == specialty_id:
            return True
    return False


class UserDirectoryClient:
    """
    Lookups against the users service.

    Every lookup degrades to ``None``/``False`` when the service is slow or
    down; callers that cannot proceed without an answer pass ``required=True``.
    """

    CONTACT_CACHE_PREFIX = "directory:user"
    PATIENT_CACHE_PREFIX = "directory:patient"
    SPECIALTY_CACHE_PREFIX = "directory:specialty"

    def __init__(
        self,
        base_url: str | None = None,
        auth_header: str | None = None,
        cache_manager: CacheManager | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client; ``transport`` lets tests plug a mock transport."""
        self.base_url = (base_url or settings.user_service_url).rstrip("/")
        self.auth_header = auth_header
        self.cache = cache_manager
        self.timeout = timeout if timeout is not None else settings.user_service_timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.auth_header} if self.auth_header else {}

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any | None:
        """
        GET a JSON document.

        Returns:
            Decoded body, or None on a 4xx answer

        Raises:
            DirectoryLookupFailed: On transport errors, timeouts and 5xx answers
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning("user_directory_request_failed", url=url, error=str(e))
            raise DirectoryLookupFailed(str(e)) from e

        if response.status_code >= 500:
            logger.warning("user_directory_server_error", url=url, status=response.status_code)
            raise DirectoryLookupFailed(f"{response.status_code} from {url}")
        if response.status_code >= 400:
            logger.info("user_directory_not_found", url=url, status=response.status_code)
            return None
        return response.json()

    async def _try_get(self, url: str, params: dict[str, Any] | None = None) -> Any | None:
        try:
            return await self._get(url, params)
        except DirectoryLookupFailed:
            return None

    async def get_contact_by_user_id(self, user_id: str) -> Contact | None:
        """Resolve email and full name of any user (doctors included)."""
        cache_key = f"{self.CONTACT_CACHE_PREFIX}:{user_id}"
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return Contact(**cached)

        candidates = [
            f"{self.base_url}/api/v1/users/{user_id}",
            f"{self.base_url}/users/{user_id}",
            f"{self.base_url}/api/users/{user_id}",
        ]
        for url in candidates:
            data = await self._try_get(url)
            if not data:
                continue
            user = data.get("user") or data.get("data") or data
            contact = _normalize_contact(user)
            if contact and (contact.email or contact.full_name):
                if self.cache:
                    self.cache.set_json(
                        cache_key, contact.model_dump(), ttl=settings.directory_cache_ttl
                    )
                return contact
        return None

    async def get_patient_contact_by_patient_id(
        self,
        patient_id: str,
        required: bool = False,
    ) -> PatientContact | None:
        """
        Resolve a patient profile with its user's contact data.

        Args:
            patient_id: Patient profile ID
            required: Raise instead of degrading when the service is unreachable

        Raises:
            UpstreamUnavailableException: If required and no candidate answered
        """
        cache_key = f"{self.PATIENT_CACHE_PREFIX}:{patient_id}"
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return PatientContact(**cached)

        candidates = [
            f"{self.base_url}/api/v1/users/patients/{patient_id}",
            f"{self.base_url}/users/patients/{patient_id}",
            f"{self.base_url}/api/v1/patients/{patient_id}",
        ]
        failures = 0
        for url in candidates:
            try:
                data = await self._get(url)
            except DirectoryLookupFailed:
                failures += 1
                continue
            if not data:
                continue
            patient = data.get("patient") or data.get("data") or data
            if not patient or not patient.get("user"):
                continue
            contact = _normalize_contact(patient["user"]) or Contact()
            result = PatientContact(
                email=contact.email,
                full_name=contact.full_name,
                status=patient.get("status"),
                patient_id=str(patient.get("id") or patient_id),
                user_id=str(patient["userId"]) if patient.get("userId") else None,
            )
            if self.cache:
                self.cache.set_json(cache_key, result.model_dump(), ttl=settings.directory_cache_ttl)
            return result

        if required and failures == len(candidates):
            raise UpstreamUnavailableException(
                "User directory is unavailable",
                code="USER_DIRECTORY_UNAVAILABLE",
            )
        return None

    async def doctor_has_specialty(self, doctor_id: str, specialty_id: str) -> bool:
        """Check whether a doctor is affiliated with a specialty."""
        if not doctor_id or not specialty_id:
            return False

        cache_key = f"{self.SPECIALTY_CACHE_PREFIX}:{doctor_id}:{specialty_id}"
        if self.cache and self.cache.get_json(cache_key):
            return True

        found = False
        data = await self._try_get(f"{self.base_url}/api/v1/users/doctors/{doctor_id}")
        if data:
            doctor = data.get("doctor") or data.get("data") or data
            found = _has_specialty(doctor, specialty_id)

        if not found:
            listing = await self._try_get(f"{self.base_url}/api/v1/users/doctors-with-affiliations")
            if listing:
                doctors = listing.get("doctors") or listing.get("data") or []
                doctor = next((d for d in doctors if str(d.get("id")) == doctor_id), None)
                found = bool(doctor) and _has_specialty(doctor, specialty_id)

        if found and self.cache:
            self.cache.set_json(cache_key, True, ttl=settings.directory_cache_ttl)
        return found

    async def resolve_patient_ids_by_name(self, name: str | None) -> list[str]:
        """Search patients by name; an unreachable service yields no ids."""
        if not name:
            return []
        data = await self._try_get(
            f"{self.base_url}/users",
            params={"q": name, "role": "PACIENTE", "limit": 100},
        )
        if not data:
            logger.warning("resolve_patient_ids_failed", name=name)
            return []
        return [str(user["id"]) for user in data.get("users") or [] if user.get("id")]

    async def get_specialty_by_id(self, specialty_id: str | None) -> Specialty | None:
        """Resolve a specialty's name through the doctors affiliated with it."""
        if not specialty_id:
            return None
        data = await self._try_get(
            f"{self.base_url}/api/users/by-specialty",
            params={"specialtyId": specialty_id},
        )
        if not data:
            return None
        for doctor in data.get("doctors") or []:
            for spec in doctor.get("specialties") or []:
                if spec.get("id") == specialty_id:
                    return Specialty(id=spec["id"], name=spec.get("name") or "")
        return None
