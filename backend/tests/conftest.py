# backend/tests/conftest.py
"""
Pytest configuration for the registration engine.

Every test gets its own SQLite file under ``tmp_path`` with the schema
created and a small school seeded:

    parents   P1 (reachable), P2 (no email, no phone)
    students  S1 grade 3, S2 grade 4 (parent P1); S3 grade 5 (parent P2 only)
    instructors
              I1 piano/guitar, Mon/Wed/Fri, room R1 on Monday and Wednesday
              I2 violin, every weekday, room R2 on Wednesday
              I3 inactive
    admins    A1 (shares an email address with I2)
    classes   C1 "Beginner Piano" by I1, Monday 15:00 for 45 minutes, 2 seats
    rooms     R1, R2

The clock is frozen at Monday 2025-09-01 09:00 in the school timezone.
"""

import os

# Set testing mode before any app imports
os.environ["IS_TESTING"] = "true"
os.environ["EMAIL_PROVIDER"] = "console"
os.environ.setdefault("CURRENT_SCHOOL_YEAR", "2025-2026")
os.environ.setdefault("CURRENT_TRIMESTER", "Fall")

from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.registration_lock import RegistrationSlotLock
from app.database import create_database_engine, create_session_factory, init_db
from app.events.handlers import register_default_handlers
from app.events.publisher import EventPublisher
from app.models.group_class import GroupClass, Room
from app.models.instructor import Admin, Instructor
from app.models.student import Parent, Student
from app.repositories.event_outbox_repository import EventOutboxRepository
from app.repositories.unit_of_work import UnitOfWork
from app.services.notification_service import NotificationService
from app.services.registration_service import RegistrationService

settings.is_testing = True

SCHOOL_YEAR = "2025-2026"
TRIMESTER = "Fall"
# Monday 2025-09-01 09:00 America/Los_Angeles
FROZEN_NOW = datetime(2025, 9, 1, 16, 0, tzinfo=timezone.utc)


class RecordingEmailClient:
    """Email client double that records sends and can be told to fail."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []
        self.fail_for: set = set()
        self.attempts = 0

    async def send_email(self, to: str, subject: str, html: str) -> Dict[str, Any]:
        self.attempts += 1
        if to in self.fail_for or "*" in self.fail_for:
            raise ConnectionError(f"SMTP relay refused {to}")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return {"id": f"test-{len(self.sent)}"}

    def recipients(self) -> List[str]:
        return [m["to"] for m in self.sent]


@pytest.fixture(autouse=True)
def _operative_term(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "current_school_year", SCHOOL_YEAR)
    monkeypatch.setattr(settings, "current_trimester", TRIMESTER)
    monkeypatch.setattr(settings, "cancellation_mode", "soft")
    yield


@pytest.fixture
def engine(tmp_path):
    test_engine = create_database_engine(f"sqlite:///{tmp_path / 'registrations.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


def _seed(session: Session) -> None:
    session.add_all(
        [
            Parent(id="P1", first_name="Dana", last_name="Reyes", email="dana@example.org"),
            Parent(id="P2", first_name="Sam", last_name="Okafor"),
            Student(
                id="S1",
                first_name="Ava",
                last_name="Reyes",
                email="ava@example.org",
                grade="3",
                birth_date=date(2016, 5, 1),
                parent1_id="P1",
            ),
            Student(
                id="S2",
                first_name="Leo",
                last_name="Reyes",
                email="leo@example.org",
                grade="4",
                birth_date=date(2015, 2, 10),
                parent1_id="P1",
            ),
            Student(
                id="S3",
                first_name="Mia",
                last_name="Okafor",
                grade="5",
                birth_date=date(2014, 11, 20),
                parent1_id="P2",
            ),
            Instructor(
                id="I1",
                first_name="Nora",
                last_name="Lind",
                email="nora@example.org",
                instruments=["Piano", "Guitar"],
                available_days=["Monday", "Wednesday", "Friday"],
                min_grade="K",
                max_grade="8",
                monday_room_id="R1",
                wednesday_room_id="R1",
            ),
            Instructor(
                id="I2",
                first_name="Omar",
                last_name="Haddad",
                email="shared@example.org",
                instruments=["Violin"],
                available_days=["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"],
                min_grade="3",
                wednesday_room_id="R2",
            ),
            Instructor(
                id="I3",
                first_name="Past",
                last_name="Teacher",
                email="past@example.org",
                is_active=False,
                instruments=["Piano"],
                available_days=["Monday"],
            ),
            Admin(id="A1", first_name="Office", last_name="Manager", email="shared@example.org"),
            GroupClass(
                id="C1",
                instructor_id="I1",
                title="Beginner Piano",
                instrument="Piano",
                day="Monday",
                start_time="15:00",
                length=45,
                room_id="R1",
                size=2,
                fee=20,
            ),
            Room(id="R1", name="Music Room", capacity=20),
            Room(id="R2", name="Practice Room", capacity=4),
        ]
    )
    session.commit()


@pytest.fixture
def seeded(session_factory) -> sessionmaker[Session]:
    with session_factory() as session:
        _seed(session)
    return session_factory


@pytest.fixture
def uow(seeded):
    unit = UnitOfWork(seeded)
    yield unit
    unit.dispose()


@pytest.fixture
def uow_factory(seeded) -> Callable[[], UnitOfWork]:
    return lambda: UnitOfWork(seeded)


@pytest.fixture
def email_client() -> RecordingEmailClient:
    return RecordingEmailClient()


@pytest.fixture
def notification_service(email_client) -> NotificationService:
    return NotificationService(email_client)


@pytest_asyncio.fixture
async def publisher(
    seeded, uow_factory, notification_service
) -> AsyncIterator[EventPublisher]:
    pub = EventPublisher(EventOutboxRepository(seeded))
    register_default_handlers(pub, uow_factory, notification_service)
    yield pub
    # Side-channel tasks must finish before the database goes away
    await pub.drain()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FROZEN_NOW


@pytest.fixture
def slot_lock() -> RegistrationSlotLock:
    return RegistrationSlotLock()


@pytest.fixture
def registration_service(uow, publisher, clock) -> RegistrationService:
    return RegistrationService(uow, publisher, clock)


@pytest.fixture
def private_payload() -> Callable[..., Dict[str, Any]]:
    def build(**overrides: Any) -> Dict[str, Any]:
        payload = {
            "student_id": "S1",
            "registration_type": "private",
            "instructor_id": "I1",
            "instrument": "Piano",
            "day": "Wednesday",
            "start_time": "15:00",
            "length": 30,
            "transportation_type": "pickup",
            "school_year": SCHOOL_YEAR,
            "trimester": TRIMESTER,
        }
        payload.update(overrides)
        return {k: v for k, v in payload.items() if v is not None}

    return build


@pytest.fixture
def group_payload() -> Callable[..., Dict[str, Any]]:
    def build(**overrides: Any) -> Dict[str, Any]:
        payload = {
            "student_id": "S1",
            "registration_type": "group",
            "class_id": "C1",
            "transportation_type": "bus",
            "school_year": SCHOOL_YEAR,
            "trimester": TRIMESTER,
        }
        payload.update(overrides)
        return {k: v for k, v in payload.items() if v is not None}

    return build
