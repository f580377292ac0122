"""FastAPI dependencies."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.policies import Actor, ensure_allowed
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import actor_from_payload, decode_access_token
from app.database import get_db, get_session_factory
from app.services.medical_record_client import MedicalRecordClient
from app.services.notification_service import NotificationService
from app.services.user_directory import UserDirectoryClient

# Security
security = HTTPBearer()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Extract and validate the caller from the JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Authenticated actor

    Raises:
        HTTPException: If token is invalid, expired or lacks identity claims
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor = actor_from_payload(payload)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token lacks a valid identity or role",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def require(operation: str) -> Callable:
    """Dependency factory enforcing the policy table for one operation."""

    async def checker(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        ensure_allowed(operation, actor)
        return actor

    return checker


def get_cache_manager() -> CacheManager:
    """Get the shared Redis cache manager."""
    return CacheManager(get_redis_client())


def get_user_directory(
    request: Request,
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
) -> UserDirectoryClient:
    """Users service client acting with the caller's credentials."""
    return UserDirectoryClient(
        auth_header=request.headers.get("Authorization"),
        cache_manager=cache,
    )


def get_medical_record_client(request: Request) -> MedicalRecordClient:
    """Medical records client acting with the caller's credentials."""
    return MedicalRecordClient(auth_header=request.headers.get("Authorization"))


def get_notification_service(request: Request) -> NotificationService:
    """Notification service enqueueing on the application's arq pool."""
    return NotificationService(getattr(request.app.state, "arq_pool", None))


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Directory = Annotated[UserDirectoryClient, Depends(get_user_directory)]
Notifier = Annotated[NotificationService, Depends(get_notification_service)]
MedicalRecords = Annotated[MedicalRecordClient, Depends(get_medical_record_client)]
