"""Role policy table and ownership rules for every exposed operation."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from app.core.exceptions import ForbiddenException


class Role(str, Enum):
    """Platform roles as issued in the users service tokens."""

    ADMIN = "ADMINISTRADOR"
    DOCTOR = "MEDICO"
    PATIENT = "PACIENTE"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""

    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


_ALL = frozenset(Role)
_STAFF = frozenset({Role.ADMIN, Role.DOCTOR})

# (operation) -> roles allowed to invoke it
POLICY: dict[str, frozenset[Role]] = {
    "appointments:create": frozenset({Role.ADMIN, Role.PATIENT}),
    "appointments:read": _ALL,
    "appointments:list": _STAFF,
    "appointments:list_by_patient": frozenset({Role.ADMIN, Role.PATIENT}),
    "appointments:list_by_doctor": _STAFF,
    "appointments:update": _ALL,
    "appointments:change_status": _ALL,
    "appointments:cancel": _ALL,
    "schedules:create": _STAFF,
    "schedules:read": _STAFF,
    "schedules:update": _STAFF,
    "schedules:delete": _STAFF,
    "schedules:availability": _ALL,
    "schedules:reschedule": _STAFF,
    "queue:join": _ALL,
    "queue:read": _STAFF,
    "queue:call": _STAFF,
    "queue:start": _STAFF,
    "queue:complete": _STAFF,
    "queue:no_show": _STAFF,
    "queue:cancel": _ALL,
    "queue:position": _ALL,
    "clinical:read": _STAFF,
}


def is_allowed(operation: str, actor: Actor) -> bool:
    """Look up the policy table; unknown operations are denied."""
    return actor.role in POLICY.get(operation, frozenset())


def ensure_allowed(operation: str, actor: Actor) -> None:
    """
    Enforce the policy table.

    Raises:
        ForbiddenException: If the actor's role may not invoke the operation
    """
    if not is_allowed(operation, actor):
        raise ForbiddenException(
            f"Role {actor.role.value} may not perform {operation}",
            code="FORBIDDEN",
            extra={"operation": operation, "role": actor.role.value},
        )


def ensure_doctor_scope(actor: Actor, doctor_id: UUID | str) -> None:
    """Doctors act only on their own schedules, queue and appointments."""
    if actor.role == Role.DOCTOR and actor.id != str(doctor_id):
        raise ForbiddenException("Doctors may only act on their own resources", code="FORBIDDEN")


def ensure_patient_scope(actor: Actor, *owner_ids: UUID | str | None) -> None:
    """Patients act only on resources whose owner id matches their identity."""
    if actor.role != Role.PATIENT:
        return
    if actor.id not in {str(owner) for owner in owner_ids if owner}:
        raise ForbiddenException("Patients may only act on their own resources", code="FORBIDDEN")
