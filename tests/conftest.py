import os
from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

# Set testing environment before the application modules read their settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"
os.environ["NOTIFICATION_BACKEND"] = "log"

from medcare.core.database import create_db_engine, init_db
from medcare.core.security import Actor, UserRole
from medcare.models.doctor import Doctor
from medcare.services.appointment_service import AppointmentService
from medcare.services.notifications import NotificationTrigger
from medcare.services.slot_catalog import SlotCatalog

PATIENT_A = Actor(id=1, role=UserRole.PATIENT)
PATIENT_B = Actor(id=2, role=UserRole.PATIENT)
PATIENT_C = Actor(id=3, role=UserRole.PATIENT)
ADMIN = Actor(id=900, role=UserRole.ADMIN)
DOCTOR_USER = Actor(id=500, role=UserRole.DOCTOR)
OTHER_DOCTOR_USER = Actor(id=501, role=UserRole.DOCTOR)


class RecordingNotifier(NotificationTrigger):
    """Keeps every event instead of delivering it."""

    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)

    def of_type(self, name):
        return [e for e in self.events if e.name == name]


class FailingNotifier(NotificationTrigger):
    def __init__(self):
        self.attempts = 0

    def send(self, event):
        self.attempts += 1
        raise ConnectionError("notification broker down")


def future(days: int = 1) -> date:
    return date.today() + timedelta(days=days)


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'medcare.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog():
    return SlotCatalog(ttl_seconds=300)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db, catalog, notifier):
    return AppointmentService(db, catalog, notifier)


@pytest.fixture
def doctor(db):
    doctor = Doctor(user_id=DOCTOR_USER.id, specialty="Cardiology", consultation_fee=120)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def other_doctor(db):
    doctor = Doctor(user_id=OTHER_DOCTOR_USER.id, specialty="Dermatology", consultation_fee=80)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def slots(db, catalog):
    return catalog.list_slots(db)


@pytest.fixture
def book(service):
    """Create a pending request with sensible defaults."""
    def _book(actor, doctor_id, slot_id, on_date=None, **overrides):
        fields = {
            "consultation_type": "online",
            "patient_age": 34,
            "patient_gender": "female",
            "health_info": "Recurring headaches",
        }
        fields.update(overrides)
        return service.create(
            actor,
            doctor_id=doctor_id,
            appointment_date=(on_date or future()).isoformat(),
            time_slot_id=slot_id,
            **fields
        )
    return _book
