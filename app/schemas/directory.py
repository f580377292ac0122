"""Shapes returned by the user directory and medical record services."""

from pydantic import BaseModel

ACTIVE_PATIENT_STATUSES = {"ACTIVE", "ACTIVO"}


class Contact(BaseModel):
    """Contact data of any platform user."""

    email: str | None = None
    full_name: str | None = None


class PatientContact(Contact):
    """Contact data of a patient profile."""

    status: str | None = None
    patient_id: str | None = None
    user_id: str | None = None

    @property
    def is_active(self) -> bool:
        """Profiles without a status are treated as active."""
        return self.status is None or self.status.upper() in ACTIVE_PATIENT_STATUSES


class Specialty(BaseModel):
    """Medical specialty reference."""

    id: str
    name: str
