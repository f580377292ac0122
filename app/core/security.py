"""Security utilities for JWT handling.

Tokens are issued by the users service; this service only verifies them and
turns their claims into an ``Actor``.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from app.config import settings
from app.core.policies import Actor, Role

# Role names as they may appear in tokens
ROLE_ALIASES = {
    "ADMINISTRADOR": Role.ADMIN,
    "ADMIN": Role.ADMIN,
    "MEDICO": Role.DOCTOR,
    "MÉDICO": Role.DOCTOR,
    "DOCTOR": Role.DOCTOR,
    "PACIENTE": Role.PATIENT,
    "PATIENT": Role.PATIENT,
}


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.now(UTC),
            "type": "access",
        }
    )

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    # Refresh tokens are not accepted; untyped tokens are
    if payload.get("type", "access") != "access":
        return None
    return payload


def actor_from_payload(payload: dict[str, Any]) -> Actor | None:
    """Build the caller identity from ``id``/``sub`` and ``role`` claims."""
    subject = payload.get("id") or payload.get("sub")
    role = payload.get("role")
    if role is None and payload.get("roles"):
        role = payload["roles"][0]
    if not subject or not isinstance(role, str):
        return None
    mapped = ROLE_ALIASES.get(role.strip().upper())
    if mapped is None:
        return None
    return Actor(id=str(subject), role=mapped)
