import os
import tempfile
from datetime import datetime

# Settings are read at import time: point everything at a throwaway database first
_TMP_DIR = tempfile.mkdtemp(prefix="taxihub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["STAFF_TOKEN"] = "test-staff-token"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["TZ_DEFAULT"] = "UTC"
os.environ["ADMIN_NOTIFY_TO"] = "dispatch@example.com"
os.environ["ENABLE_EMAIL"] = "true"
os.environ["ENABLE_CALENDAR_SYNC"] = "true"
for _var in ("SMTP_HOST", "SMTP_USERNAME", "SMTP_PASSWORD", "MAIL_FROM"):
    os.environ.pop(_var, None)

import pytest
from fastapi.testclient import TestClient

from taxihub.db import Base, engine, SessionLocal
from taxihub.main import app
from taxihub.models.models import User, Profile, Vehicle, Booking, BookingAudit, Notification
from taxihub.auth.security import create_access_token, get_password_hash
from taxihub.services import mailer, calendar_sync


ADMIN_HEADERS = {"x-admin-token": "test-admin-token"}
STAFF_HEADERS = {"x-staff-token": "test-staff-token"}


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing email instead of talking to SMTP."""
    sent = []

    def fake_send(to, subject, html):
        sent.append({"to": to, "subject": subject, "html": html})
        return mailer.SENT

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


@pytest.fixture
def calendar_calls(monkeypatch):
    calls = []

    def fake_upsert(booking_id):
        calls.append(booking_id)
        return True

    monkeypatch.setattr(calendar_sync, "upsert_calendar_event", fake_upsert)
    return calls


_counter = {"n": 0}


def make_user(db, role="customer", status="active", email=None, password="secret123", first_name=None, last_name=None):
    _counter["n"] += 1
    user = User(
        email=email or f"{role}{_counter['n']}@example.com",
        password_hash=get_password_hash(password),
        role=role,
        status=status,
    )
    if first_name or last_name:
        user.profile = Profile(first_name=first_name, last_name=last_name)
    db.add(user)
    db.commit()
    return user


def make_vehicle(db, status="active", name="Toyota Prius", plate=None):
    _counter["n"] += 1
    vehicle = Vehicle(name=name, plate=plate or f"TX-{_counter['n']:03d}", status=status)
    db.add(vehicle)
    db.commit()
    return vehicle


def make_booking(db, start, end, status="scheduled", driver_id=None, vehicle_id=None, deleted=False, **extra):
    booking = Booking(
        service_id=extra.pop("service_id", 1),
        source=extra.pop("source", "web"),
        created_by_role=extra.pop("created_by_role", "admin"),
        start_time=start,
        end_time=end,
        status=status,
        driver_id=driver_id,
        vehicle_id=vehicle_id,
        deleted=deleted,
        **extra,
    )
    db.add(booking)
    db.commit()
    return booking


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def fetch_booking(db, booking_id) -> Booking:
    db.expire_all()
    return db.query(Booking).filter(Booking.id == booking_id).one()


def audit_rows(db, booking_id):
    db.expire_all()
    return db.query(BookingAudit).filter(BookingAudit.booking_id == booking_id).order_by(BookingAudit.id).all()


def notification_rows(db, booking_id):
    db.expire_all()
    return db.query(Notification).filter(Notification.booking_id == booking_id).order_by(Notification.id).all()


def dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


def booking_payload(**overrides) -> dict:
    payload = {
        "service_id": 1,
        "start_time": "2025-01-10T09:00:00",
        "end_time": "2025-01-10T10:00:00",
        "source": "web",
        "pickup_point": "Airport T1",
        "dropoff_point": "Main St 10",
        "contact_name": "Jane Rider",
        "contact_phone": "+15550123",
        "contact_email": "jane@example.com",
    }
    payload.update(overrides)
    return payload
