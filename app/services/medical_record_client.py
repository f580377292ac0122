"""Client for the sibling medical records service."""

from typing import Any

import httpx
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)


class MedicalRecordClient:
    """Read-only lookups used by the clinical workflow views."""

    def __init__(
        self,
        base_url: str | None = None,
        auth_header: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client with the caller's Authorization header."""
        self.base_url = (base_url or settings.medical_record_service_url).rstrip("/")
        self.auth_header = auth_header
        self.timeout = timeout if timeout is not None else settings.user_service_timeout
        self.transport = transport

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any | None:
        headers = {"Authorization": self.auth_header} if self.auth_header else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}{path}", params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("medical_record_request_failed", path=path, error=str(e))
            return None
        if response.status_code != 200:
            logger.info("medical_record_not_found", path=path, status=response.status_code)
            return None
        return response.json()

    async def get_record_by_appointment_id(self, appointment_id: str) -> dict[str, Any] | None:
        """Medical record created for an appointment, if any."""
        data = await self._get(f"/medical-records/by-appointment/{appointment_id}")
        if not data:
            return None
        return data.get("data") or None

    async def list_records_by_physician(
        self,
        physician_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Paginated records authored by a doctor; empty when unreachable."""
        data = await self._get(
            "/medical-records",
            params={"physicianId": physician_id, "page": page, "limit": limit},
        )
        return data or {"data": [], "page": page, "limit": limit}
