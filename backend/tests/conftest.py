"""
Global test fixtures for pytest.

- In-memory SQLite database shared by the app and the test
- Clock pinned to a fixed clinic day
- Authenticated headers per staff role
- Reference data (departments, doctor) and visit factories
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("RAZORPAY_KEY_ID", None)

import itertools
from datetime import date
from decimal import Decimal

import bcrypt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from database.connection import Base, get_db
from database.models import (
    Department, Doctor, Patient, Visit, StaffUser, ClinicSetting,
    VisitStatus, PaymentStatus, DoctorStatus, StaffRole
)
from api.queue import get_today
from api.booking import build_qr_payload, encode_qr_payload

TODAY = date(2025, 3, 10)
STAFF_PASSWORD = "secret123"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ============================================================================
# Database / client
# ============================================================================

@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """TestClient wired to the test session and the pinned clinic day."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_today] = lambda: TODAY
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def set_setting(db_session):
    """Store a clinic setting value."""
    def _set(key, value):
        row = db_session.query(ClinicSetting).filter(ClinicSetting.setting_key == key).first()
        if row:
            row.setting_value = value
        else:
            db_session.add(ClinicSetting(setting_key=key, setting_value=value))
        db_session.commit()
    return _set


# ============================================================================
# Staff accounts
# ============================================================================

def create_staff(db, email, role, doctor_id=None, is_active=True):
    user = StaffUser(
        email=email,
        full_name=email.split("@")[0].title(),
        password_hash=bcrypt.hashpw(STAFF_PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode(),
        role=role.value,
        doctor_id=doctor_id,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def login_headers(client, email):
    response = client.post("/api/auth/login", json={"email": email, "password": STAFF_PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_user(db_session):
    return create_staff(db_session, "admin@mediqueue.in", StaffRole.ADMIN)


@pytest.fixture
def admin_headers(client, admin_user):
    return login_headers(client, admin_user.email)


@pytest.fixture
def staff_headers(client, db_session):
    user = create_staff(db_session, "reception@mediqueue.in", StaffRole.STAFF)
    return login_headers(client, user.email)


@pytest.fixture
def doctor_user(db_session, doctor):
    return create_staff(db_session, "amit.desai@mediqueue.in", StaffRole.DOCTOR, doctor_id=doctor.id)


@pytest.fixture
def doctor_headers(client, doctor_user):
    return login_headers(client, doctor_user.email)


# ============================================================================
# Reference data
# ============================================================================

@pytest.fixture
def departments(db_session):
    general = Department(
        name="general",
        display_name="General Medicine",
        consultation_fee=Decimal("300.00"),
        average_consultation_time=10,
    )
    pediatrics = Department(
        name="pediatrics",
        display_name="Pediatrics",
        consultation_fee=Decimal("400.00"),
        average_consultation_time=15,
    )
    db_session.add_all([general, pediatrics])
    db_session.commit()
    return {"general": general, "pediatrics": pediatrics}


@pytest.fixture
def doctor(db_session, departments):
    doc = Doctor(
        name="Dr. Amit Desai",
        specialization="general",
        status=DoctorStatus.ACTIVE.value,
        max_patients_per_day=50,
    )
    db_session.add(doc)
    db_session.commit()
    db_session.refresh(doc)
    return doc


# ============================================================================
# Visits
# ============================================================================

@pytest.fixture
def make_visit(db_session):
    """Insert a patient + visit row directly, bypassing the booking flow."""
    counter = itertools.count(1)

    def _make(stn, department="general", status=VisitStatus.WAITING,
              payment_status=PaymentStatus.PAY_AT_CLINIC, visit_date=TODAY,
              doctor_id=None):
        n = next(counter)
        patient = Patient(
            uid=f"CLN1-TEST{n:04d}",
            name=f"Patient {n}",
            age=30 + n,
            phone=f"90000{n:05d}",
        )
        db_session.add(patient)
        db_session.flush()

        visit = Visit(
            patient_id=patient.id,
            clinic_id="CLN1",
            stn=stn,
            department=department,
            visit_date=visit_date,
            status=VisitStatus(status).value,
            payment_status=PaymentStatus(payment_status).value,
            qr_payload=encode_qr_payload(build_qr_payload(patient.uid, stn, visit_date)),
            doctor_id=doctor_id,
        )
        db_session.add(visit)
        db_session.commit()
        db_session.refresh(visit)
        return visit

    return _make


@pytest.fixture
def booking_payload():
    """Minimal valid booking form, with overrides."""
    def _payload(**overrides):
        payload = {
            "name": "Asha Verma",
            "age": 34,
            "phone": "9876543210",
            "department": "general",
        }
        payload.update(overrides)
        return payload
    return _payload
