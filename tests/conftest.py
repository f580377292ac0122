import os
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Settings are read at import time; make sure the app never needs a real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_FORMAT", "console")

# Load environment variables from .env file
load_dotenv()

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from app.core.exceptions import UpstreamUnavailableException  # noqa: E402
from app.core.policies import Actor, Role  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.database import get_db, get_session_factory  # noqa: E402
from app.dependencies import (  # noqa: E402
    get_medical_record_client,
    get_notification_service,
    get_user_directory,
)
from app.main import app  # noqa: E402
from app.models import combined_metadata  # noqa: E402
from app.schemas.directory import Contact, PatientContact  # noqa: E402
from app.services.notification_service import NotificationService  # noqa: E402
from app.worker import WorkerSettings  # noqa: E402

metadata = combined_metadata()


class FakeDirectory:
    """In-memory stand-in for the users service."""

    def __init__(self):
        self.patients: dict[str, PatientContact] = {}
        self.missing: set[str] = set()
        self.specialties: set[tuple[str, str]] = set()
        self.names: dict[str, list[str]] = {}
        self.unavailable = False

    async def get_patient_contact_by_patient_id(
        self, patient_id: str, required: bool = False
    ) -> PatientContact | None:
        if self.unavailable:
            if required:
                raise UpstreamUnavailableException(
                    "User directory is unavailable", code="USER_DIRECTORY_UNAVAILABLE"
                )
            return None
        if patient_id in self.missing:
            return None
        return self.patients.get(
            patient_id,
            PatientContact(
                email=f"{patient_id[:8]}@example.com",
                full_name="Ana Pérez",
                status="ACTIVE",
                patient_id=patient_id,
                user_id=patient_id,
            ),
        )

    async def get_contact_by_user_id(self, user_id: str) -> Contact | None:
        return Contact(email=f"{user_id[:8]}@clinic.example.com", full_name="Dr. Gómez")

    async def doctor_has_specialty(self, doctor_id: str, specialty_id: str) -> bool:
        return (doctor_id, specialty_id) in self.specialties

    async def resolve_patient_ids_by_name(self, name: str | None) -> list[str]:
        return self.names.get(name or "", [])


class FakeEmailSender:
    """Collects emails instead of sending them."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, to: str, subject: str, html: str) -> None:
        self.sent.append({"to": to, "subject": subject, "html": html})


class FakeJobQueue:
    """Records arq jobs in memory and runs them through the worker functions."""

    def __init__(self):
        self.jobs: list[dict] = []
        self.fail = False

    async def enqueue_job(self, function: str, *args, _job_id: str | None = None, **kwargs):
        if self.fail:
            raise ConnectionError("redis is down")
        if _job_id is not None and any(job["job_id"] == _job_id for job in self.jobs):
            return None
        job_id = _job_id or uuid4().hex
        self.jobs.append({"function": function, "args": args, "kwargs": kwargs, "job_id": job_id})
        return SimpleNamespace(job_id=job_id)

    async def run(self, ctx: dict) -> None:
        """Run and drain every queued job, in order, as a worker would on its first try."""
        functions = {function.__name__: function for function in WorkerSettings.functions}
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            await functions[job["function"]]({"job_try": 1, **ctx}, *job["args"], **job["kwargs"])


class FakeMedicalRecords:
    """Canned medical records service."""

    async def get_record_by_appointment_id(self, appointment_id: str) -> dict | None:
        return {"id": "record-1", "appointmentId": appointment_id}

    async def list_records_by_physician(
        self, physician_id: str, page: int = 1, limit: int = 20
    ) -> dict:
        return {"data": [{"id": "record-1", "physicianId": physician_id}], "page": page, "limit": limit}


def next_weekday(weekday: int, hour: int = 9, minute: int = 0) -> datetime:
    """
    Next date strictly after today falling on ``weekday`` (Python numbering, Monday = 0).

    Returns:
        Aware UTC datetime at ``hour:minute``
    """
    today = datetime.now(UTC).date()
    days_ahead = (weekday - today.weekday()) % 7 or 7
    day = today + timedelta(days=days_ahead)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def make_headers(actor_id: str, role: Role) -> dict:
    """Bearer headers for an actor, shaped like the users service tokens."""
    token = create_access_token(
        data={"id": actor_id, "role": role.value},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh database per test; SQLite file unless TEST_DATABASE_URL is set."""
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(url, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def job_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest.fixture
def notifier(job_queue) -> NotificationService:
    return NotificationService(job_queue)


@pytest.fixture
def run_jobs(job_queue, directory, email_sender):
    """Deliver every queued notification with the fake directory and sender."""

    async def run() -> None:
        await job_queue.run({"directory_factory": lambda: directory, "sender": email_sender})

    return run


@pytest_asyncio.fixture
async def client(
    session_factory,
    directory,
    notifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client wired to the test database and fakes."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_user_directory] = lambda: directory
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_medical_record_client] = lambda: FakeMedicalRecords()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def doctor_id() -> str:
    return str(uuid4())


@pytest.fixture
def patient_id() -> str:
    return str(uuid4())


@pytest.fixture
def admin() -> Actor:
    return Actor(id=str(uuid4()), role=Role.ADMIN)


@pytest.fixture
def doctor(doctor_id) -> Actor:
    return Actor(id=doctor_id, role=Role.DOCTOR)


@pytest.fixture
def patient(patient_id) -> Actor:
    return Actor(id=patient_id, role=Role.PATIENT)


@pytest.fixture
def admin_headers(admin) -> dict:
    return make_headers(admin.id, Role.ADMIN)


@pytest.fixture
def doctor_headers(doctor_id) -> dict:
    return make_headers(doctor_id, Role.DOCTOR)


@pytest.fixture
def patient_headers(patient_id) -> dict:
    return make_headers(patient_id, Role.PATIENT)


@pytest.fixture
def monday_9am() -> datetime:
    """Next Monday 09:00 UTC (day_of_week 1 in the 0 = Sunday numbering)."""
    return next_weekday(0)
