"""Appointment notification emails: enqueued through arq, delivered by the worker."""

import asyncio
import smtplib
import ssl
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

import structlog
from arq.connections import ArqRedis

from app.config import settings
from app.services.user_directory import UserDirectoryClient
from app.utils.time_grid import ensure_utc, format_duration

logger = structlog.get_logger(__name__)

DEFAULT_DOCTOR_NAME = "Médico"
DEFAULT_PATIENT_NAME = "Paciente"

EMAIL_JOB = "send_appointment_email"

CREATED = "appointment_created"
CANCELLED = "appointment_cancelled"
RESCHEDULED = "appointment_rescheduled"
REMINDER = "appointment_reminder"

PAYLOAD_FIELDS = (
    "id",
    "patient_id",
    "doctor_id",
    "appointment_date",
    "duration",
    "reason",
    "cancellation_reason",
)


class EmailSender(Protocol):
    """Anything able to deliver one HTML email."""

    async def send(self, to: str, subject: str, html: str) -> None: ...


class SmtpEmailSender:
    """SMTP-over-SSL delivery; skipped (logged) when credentials are missing."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        from_address: str | None = None,
    ):
        """Initialize sender from explicit values or settings."""
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.user = user or settings.smtp_user
        self.password = password or settings.smtp_password
        self.from_address = from_address or settings.email_from_address

    def _send_sync(self, to: str, subject: str, html: str) -> None:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = to
        message.attach(MIMEText(html, "html", "utf-8"))

        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=15) as server:
            server.login(self.user, self.password)
            server.sendmail(self.from_address, [to], message.as_string())

    async def send(self, to: str, subject: str, html: str) -> None:
        """Deliver an email without blocking the event loop."""
        if not (self.user and self.password):
            logger.warning("smtp_not_configured", to=to, subject=subject)
            return
        await asyncio.to_thread(self._send_sync, to, subject, html)


def _format_when(value: Any) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return ensure_utc(value).strftime("%a %d %b %Y %I:%M %p UTC")


def _wrap(title: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; padding: 24px;">'
        f'<h2 style="margin:0 0 12px;">{title}</h2>{body}'
        '<p style="font-size:12px;color:#777;margin-top:24px;">MedCore</p></div>'
    )


def _line(label: str, value: Any) -> str:
    if value is None or value == "":
        return ""
    return f"<p style=\"margin:4px 0;\"><strong>{label}:</strong> {value}</p>"


class AppointmentMailer:
    """Renders appointment emails and hands them to an ``EmailSender``."""

    def __init__(self, directory: UserDirectoryClient, sender: EmailSender):
        """Initialize mailer with its collaborators."""
        self.directory = directory
        self.sender = sender

    async def deliver(
        self,
        kind: str,
        appointment: dict[str, Any],
        previous: dict[str, Any] | None = None,
        hours_before: int | None = None,
    ) -> None:
        """
        Send one appointment email.

        Missing recipients are logged and skipped; delivery errors propagate
        so the worker can retry.
        """
        if kind == CREATED:
            await self._deliver_created(appointment)
        elif kind == CANCELLED:
            await self._deliver_cancelled(appointment)
        elif kind == RESCHEDULED:
            await self._deliver_rescheduled(previous or appointment, appointment)
        elif kind == REMINDER:
            await self._deliver_reminder(
                appointment, hours_before or settings.reminder_hours_before
            )
        else:
            raise ValueError(f"Unknown notification kind: {kind}")

    async def _recipients(self, appointment: dict[str, Any]) -> tuple[str, str, str] | None:
        """Resolve (email, patient name, doctor name); None when no email."""
        patient = await self.directory.get_patient_contact_by_patient_id(
            str(appointment["patient_id"])
        )
        if not patient or not patient.email:
            logger.warning(
                "notification_skipped_no_email",
                appointment_id=str(appointment["id"]),
                patient_id=str(appointment["patient_id"]),
            )
            return None
        doctor = await self.directory.get_contact_by_user_id(str(appointment["doctor_id"]))
        doctor_name = doctor.full_name if doctor and doctor.full_name else DEFAULT_DOCTOR_NAME
        return patient.email, patient.full_name or DEFAULT_PATIENT_NAME, doctor_name

    async def _deliver_created(self, appointment: dict[str, Any]) -> None:
        recipients = await self._recipients(appointment)
        if not recipients:
            return
        email, patient_name, doctor_name = recipients
        body = (
            f"<p>Hola <strong>{patient_name}</strong>, tu cita ha sido programada.</p>"
            + _line("Fecha", _format_when(appointment["appointment_date"]))
            + _line("Duración", format_duration(appointment.get("duration")))
            + _line("Médico", doctor_name)
            + _line("Motivo", appointment.get("reason"))
        )
        await self.sender.send(email, "Cita creada", _wrap("¡Cita creada exitosamente!", body))

    async def _deliver_cancelled(self, appointment: dict[str, Any]) -> None:
        recipients = await self._recipients(appointment)
        if not recipients:
            return
        email, patient_name, doctor_name = recipients
        body = (
            f"<p>Hola <strong>{patient_name}</strong>, tu cita ha sido cancelada.</p>"
            + _line("Fecha", _format_when(appointment["appointment_date"]))
            + _line("Médico", doctor_name)
            + _line("Motivo de cancelación", appointment.get("cancellation_reason"))
        )
        await self.sender.send(email, "Cita cancelada", _wrap("Cita cancelada", body))

    async def _deliver_rescheduled(self, previous: dict[str, Any], current: dict[str, Any]) -> None:
        recipients = await self._recipients(current)
        if not recipients:
            return
        email, patient_name, doctor_name = recipients
        body = (
            f"<p>Hola <strong>{patient_name}</strong>, tu cita ha sido reprogramada.</p>"
            + _line("Fecha anterior", _format_when(previous["appointment_date"]))
            + _line("Nueva fecha", _format_when(current["appointment_date"]))
            + _line("Duración", format_duration(current.get("duration")))
            + _line("Médico", doctor_name)
        )
        await self.sender.send(email, "Cita reprogramada", _wrap("Cita reprogramada", body))

    async def _deliver_reminder(self, appointment: dict[str, Any], hours_before: int) -> None:
        recipients = await self._recipients(appointment)
        if not recipients:
            return
        email, patient_name, doctor_name = recipients
        body = (
            f"<p>Hola <strong>{patient_name}</strong>, tu cita es en "
            f"{format_duration(hours_before * 60)}.</p>"
            + _line("Fecha", _format_when(appointment["appointment_date"]))
            + _line("Médico", doctor_name)
        )
        await self.sender.send(email, "Recordatorio de cita", _wrap("Recordatorio de cita", body))


def job_payload(appointment: dict[str, Any]) -> dict[str, Any]:
    """The appointment fields an email needs, as plain JSON values."""
    payload: dict[str, Any] = {}
    for field in PAYLOAD_FIELDS:
        value = appointment.get(field)
        if isinstance(value, datetime):
            value = ensure_utc(value).isoformat()
        elif value is not None and not isinstance(value, (str, int)):
            value = str(value)
        payload[field] = value
    return payload


class NotificationService:
    """
    Enqueues appointment emails for the arq worker.

    Notifications never fail the caller: a missing pool or a Redis error
    is logged and the email is dropped.
    """

    def __init__(self, queue: ArqRedis | None):
        """Initialize service with the arq pool (``None`` disables emails)."""
        self.queue = queue

    async def notify_created(self, appointment: dict[str, Any]) -> None:
        """Queue the 'appointment created' email."""
        await self._enqueue(CREATED, appointment)

    async def notify_cancelled(self, appointment: dict[str, Any]) -> None:
        """Queue the 'appointment cancelled' email."""
        await self._enqueue(CANCELLED, appointment)

    async def notify_rescheduled(self, previous: dict[str, Any], current: dict[str, Any]) -> None:
        """Queue the 'appointment rescheduled' email."""
        await self._enqueue(RESCHEDULED, current, previous=job_payload(previous))

    async def notify_reminder(self, appointment: dict[str, Any], hours_before: int = 24) -> None:
        """Queue the reminder email, once per appointment and lead time."""
        await self._enqueue(
            REMINDER,
            appointment,
            job_id=f"{REMINDER}:{appointment['id']}:{hours_before}",
            hours_before=hours_before,
        )

    async def _enqueue(
        self,
        kind: str,
        appointment: dict[str, Any],
        job_id: str | None = None,
        **extra: Any,
    ) -> None:
        appointment_id = str(appointment["id"])
        if self.queue is None:
            logger.warning("notification_queue_unavailable", job=kind, appointment_id=appointment_id)
            return
        try:
            job = await self.queue.enqueue_job(
                EMAIL_JOB, kind, job_payload(appointment), _job_id=job_id, **extra
            )
        except Exception as e:
            logger.error(
                "notification_enqueue_failed",
                job=kind,
                appointment_id=appointment_id,
                error=str(e),
            )
            return
        if job is None:
            logger.info("notification_already_queued", job=kind, appointment_id=appointment_id)
            return
        logger.info("notification_enqueued", job=kind, appointment_id=appointment_id, job_id=job.job_id)
