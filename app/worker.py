"""
arq background worker.

Delivers appointment emails and runs the daily reminder sweep. Start it with::

    arq app.worker.WorkerSettings
"""

from datetime import timedelta
from typing import Any

import structlog
from arq import Retry
from arq.connections import RedisSettings
from arq.cron import cron

from app.config import settings
from app.core.redis_client import CacheManager, close_redis_connection, get_redis_client
from app.core.security import create_access_token
from app.database import engine, get_session_factory
from app.middleware.logging import configure_logging
from app.services.appointment_service import AppointmentService
from app.services.notification_service import (
    AppointmentMailer,
    NotificationService,
    SmtpEmailSender,
)
from app.services.user_directory import UserDirectoryClient

logger = structlog.get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis settings for the arq pool and worker, shared with the cache."""
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password or None,
        conn_timeout=15,
        conn_retry_delay=1,
    )


def service_directory() -> UserDirectoryClient:
    """Users service client authenticated with a short-lived service token."""
    token = create_access_token(
        {"sub": "notification-worker", "role": "ADMINISTRADOR"},
        expires_delta=timedelta(minutes=10),
    )
    return UserDirectoryClient(
        auth_header=f"Bearer {token}",
        cache_manager=CacheManager(get_redis_client()),
    )


async def startup(ctx: dict[str, Any]) -> None:
    configure_logging()
    ctx["directory_factory"] = service_directory
    ctx["sender"] = SmtpEmailSender()
    ctx["session_factory"] = get_session_factory()
    logger.info("worker_started", max_tries=settings.notification_max_attempts)


async def shutdown(ctx: dict[str, Any]) -> None:
    await engine.dispose()
    close_redis_connection()
    logger.info("worker_stopped")


async def send_appointment_email(
    ctx: dict[str, Any],
    kind: str,
    appointment: dict[str, Any],
    previous: dict[str, Any] | None = None,
    hours_before: int | None = None,
) -> None:
    """
    Deliver one appointment email.

    A failed delivery is retried with a growing delay until the worker's
    ``max_tries`` is reached; the last failure is logged and re-raised.
    """
    job_try = ctx.get("job_try", 1)
    log = logger.bind(job=kind, appointment_id=appointment.get("id"), attempt=job_try)
    mailer = AppointmentMailer(ctx["directory_factory"](), ctx["sender"])
    try:
        await mailer.deliver(kind, appointment, previous=previous, hours_before=hours_before)
    except Exception as e:
        if job_try >= settings.notification_max_attempts:
            log.error("notification_abandoned", error=str(e))
            raise
        log.warning("notification_delivery_failed", error=str(e))
        raise Retry(defer=job_try * settings.notification_retry_delay) from e
    log.info("notification_delivered")


async def send_reminders_task(ctx: dict[str, Any]) -> int:
    """Daily cron job queueing reminders for appointments in the next hours."""
    async with ctx["session_factory"]() as session:
        service = AppointmentService(session, notifier=NotificationService(ctx["redis"]))
        return await service.send_upcoming_reminders(settings.reminder_hours_before)


class WorkerSettings:
    """arq worker settings."""

    functions = [send_appointment_email]
    cron_jobs = [
        cron(send_reminders_task, hour=settings.reminder_cron_hour, minute=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()

    max_jobs = settings.worker_max_jobs
    job_timeout = settings.worker_job_timeout
    keep_result = 3600

    # Retry settings for failed deliveries
    max_tries = settings.notification_max_attempts
