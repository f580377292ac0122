"""Tests for notification enqueueing, the arq worker and email composition."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch
from uuid import UUID, uuid4

import pytest
from arq import Retry
from sqlalchemy import insert

from app.config import settings
from app.models.appointments import appointments
from app.services.notification_service import (
    CREATED,
    EMAIL_JOB,
    REMINDER,
    NotificationService,
    SmtpEmailSender,
    job_payload,
)
from app.worker import WorkerSettings, send_appointment_email, send_reminders_task


class BrokenSender:
    """Email sender whose server is down."""

    def __init__(self):
        self.attempts = 0

    async def send(self, to: str, subject: str, html: str) -> None:
        self.attempts += 1
        raise ConnectionError("smtp down")


def _appointment(**overrides) -> dict:
    appointment = {
        "id": uuid4(),
        "patient_id": str(uuid4()),
        "doctor_id": str(uuid4()),
        "appointment_date": datetime(2026, 11, 2, 14, 0, tzinfo=UTC),
        "duration": 45,
        "reason": "Dolor de cabeza",
        "cancellation_reason": None,
    }
    appointment.update(overrides)
    return appointment


@pytest.mark.asyncio
async def test_notifications_are_enqueued_as_jobs(notifier, job_queue):
    appointment = _appointment()
    await notifier.notify_created(appointment)

    assert len(job_queue.jobs) == 1
    job = job_queue.jobs[0]
    assert job["function"] == EMAIL_JOB
    kind, payload = job["args"]
    assert kind == CREATED
    assert payload["id"] == str(appointment["id"])
    assert payload["appointment_date"] == "2026-11-02T14:00:00+00:00"


@pytest.mark.asyncio
async def test_reminder_is_queued_once_per_lead_time(notifier, job_queue):
    appointment = _appointment()
    await notifier.notify_reminder(appointment, 24)
    await notifier.notify_reminder(appointment, 24)
    await notifier.notify_reminder(appointment, 2)

    assert [job["job_id"] for job in job_queue.jobs] == [
        f"{REMINDER}:{appointment['id']}:24",
        f"{REMINDER}:{appointment['id']}:2",
    ]
    assert job_queue.jobs[0]["kwargs"] == {"hours_before": 24}


@pytest.mark.asyncio
async def test_enqueue_failure_does_not_fail_the_caller(notifier, job_queue):
    job_queue.fail = True

    await notifier.notify_cancelled(_appointment())

    assert job_queue.jobs == []


@pytest.mark.asyncio
async def test_notifications_are_skipped_without_a_queue():
    # no arq pool, e.g. Redis was down at startup
    await NotificationService(None).notify_created(_appointment())


@pytest.mark.asyncio
async def test_worker_retries_a_failed_delivery(directory):
    sender = BrokenSender()
    ctx = {"job_try": 1, "directory_factory": lambda: directory, "sender": sender}

    with pytest.raises(Retry) as exc_info:
        await send_appointment_email(ctx, CREATED, job_payload(_appointment()))

    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert sender.attempts == 1


@pytest.mark.asyncio
async def test_worker_gives_up_on_the_last_try(directory):
    sender = BrokenSender()
    ctx = {
        "job_try": settings.notification_max_attempts,
        "directory_factory": lambda: directory,
        "sender": sender,
    }

    with pytest.raises(ConnectionError):
        await send_appointment_email(ctx, CREATED, job_payload(_appointment()))


def test_worker_settings():
    assert WorkerSettings.max_tries == settings.notification_max_attempts
    assert WorkerSettings.functions == [send_appointment_email]
    assert len(WorkerSettings.cron_jobs) == 1
    assert WorkerSettings.cron_jobs[0].coroutine is send_reminders_task


@pytest.mark.asyncio
async def test_reminder_cron_job_queues_upcoming_reminders(session_factory, db_session, job_queue):
    soon = datetime.now(UTC) + timedelta(hours=1)
    await db_session.execute(
        insert(appointments).values(
            patient_id=uuid4(),
            doctor_id=uuid4(),
            appointment_date=soon,
            duration=30,
            status="CONFIRMED",
        )
    )
    await db_session.commit()

    queued = await send_reminders_task({"session_factory": session_factory, "redis": job_queue})

    assert queued == 1
    kind, payload = job_queue.jobs[0]["args"]
    assert kind == REMINDER
    assert UUID(payload["id"])
    assert job_queue.jobs[0]["kwargs"] == {"hours_before": settings.reminder_hours_before}


@pytest.mark.asyncio
async def test_created_email(notifier, run_jobs, email_sender, directory):
    appointment = _appointment()
    await notifier.notify_created(appointment)
    await run_jobs()

    assert len(email_sender.sent) == 1
    mail = email_sender.sent[0]
    assert mail["to"] == f"{appointment['patient_id'][:8]}@example.com"
    assert mail["subject"] == "Cita creada"
    assert "Ana Pérez" in mail["html"]
    assert "Dr. Gómez" in mail["html"]
    assert "45 min" in mail["html"]
    assert "Dolor de cabeza" in mail["html"]


@pytest.mark.asyncio
async def test_rescheduled_email(notifier, run_jobs, email_sender):
    previous = _appointment()
    current = {**previous, "appointment_date": datetime(2026, 11, 9, 9, 0, tzinfo=UTC)}
    await notifier.notify_rescheduled(previous, current)
    await run_jobs()

    html = email_sender.sent[0]["html"]
    assert email_sender.sent[0]["subject"] == "Cita reprogramada"
    assert "Mon 02 Nov 2026 02:00 PM UTC" in html
    assert "Mon 09 Nov 2026 09:00 AM UTC" in html


@pytest.mark.asyncio
async def test_email_skipped_without_address(notifier, run_jobs, email_sender, directory):
    appointment = _appointment()
    directory.missing.add(appointment["patient_id"])

    await notifier.notify_cancelled(appointment)
    await run_jobs()

    assert email_sender.sent == []


@pytest.mark.asyncio
async def test_smtp_sender_skips_without_credentials():
    sender = SmtpEmailSender()
    sender.user = None
    sender.password = None

    with patch("app.services.notification_service.smtplib.SMTP_SSL") as smtp:
        await sender.send("ana@example.com", "Cita creada", "<p>hola</p>")

    smtp.assert_not_called()


@pytest.mark.asyncio
async def test_smtp_sender_delivers():
    sender = SmtpEmailSender(
        host="smtp.example.com",
        port=465,
        user="mailer",
        password="secret",
        from_address="citas@example.com",
    )

    with patch("app.services.notification_service.smtplib.SMTP_SSL") as smtp:
        await sender.send("ana@example.com", "Cita creada", "<p>hola</p>")

    server = smtp.return_value.__enter__.return_value
    server.login.assert_called_once_with("mailer", "secret")
    from_address, recipients, _ = server.sendmail.call_args.args
    assert from_address == "citas@example.com"
    assert recipients == ["ana@example.com"]
