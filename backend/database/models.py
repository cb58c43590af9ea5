"""
Clinic Queue - Database Models
Patients, visits (queue tokens), doctors and their sessions, payments, settings
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean, DECIMAL, Date, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
from .connection import Base
import enum


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in dev/tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================
# ENUMS
# ============================================

class VisitStatus(str, enum.Enum):
    WAITING = "waiting"
    CHECKED_IN = "checked_in"
    IN_SERVICE = "in_service"
    COMPLETED = "completed"
    HELD = "held"
    EXPIRED = "expired"


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    PENDING = "pending"
    PAY_AT_CLINIC = "pay_at_clinic"
    REFUNDED = "refunded"


class PaymentMode(str, enum.Enum):
    PAY_NOW = "pay_now"
    PAY_AT_CLINIC = "pay_at_clinic"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    ONLINE = "online"
    INSURANCE = "insurance"


class DoctorStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ON_LEAVE = "on_leave"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BREAK = "break"


class ConsultationStatus(str, enum.Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StaffRole(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    DOCTOR = "doctor"


# ============================================
# STAFF ACCOUNTS
# ============================================

class StaffUser(Base):
    __tablename__ = "staff_users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=StaffRole.STAFF.value)  # admin | staff | doctor
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    doctor = relationship("Doctor", back_populates="staff_account")
    audit_logs = relationship("AuditLog", back_populates="actor")


# ============================================
# PATIENTS
# ============================================

class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    uid = Column(String(40), unique=True, index=True, nullable=False)  # CLN1-XXXXXXXX
    name = Column(String(100), nullable=False)
    age = Column(Integer, nullable=False)
    phone = Column(String(20), index=True, nullable=False)  # dedup key on booking

    email = Column(String(100))
    address = Column(Text)
    emergency_contact = Column(String(50))
    blood_group = Column(String(5))
    allergies = Column(JSONType)  # ["penicillin", ...] or NULL
    medical_conditions = Column(JSONType)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    visits = relationship("Visit", back_populates="patient", order_by="Visit.created_at")


# ============================================
# CLINIC REFERENCE DATA
# ============================================

class Department(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, index=True, nullable=False)  # machine key
    display_name = Column(String(100), nullable=False)
    consultation_fee = Column(DECIMAL(10, 2), default=0)
    average_consultation_time = Column(Integer, default=10)  # minutes
    color_code = Column(String(10), default="#3B82F6")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    specialization = Column(String(50), nullable=False)  # department name
    email = Column(String(100))
    phone = Column(String(20))
    status = Column(String(20), default=DoctorStatus.ACTIVE.value)
    available_days = Column(JSONType)  # ["monday", "tuesday", ...]
    available_hours = Column(JSONType)  # {"start": "09:00", "end": "17:00"}
    max_patients_per_day = Column(Integer, default=50)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    visits = relationship("Visit", back_populates="doctor")
    sessions = relationship("DoctorSession", back_populates="doctor")
    staff_account = relationship("StaffUser", back_populates="doctor", uselist=False)


class ClinicSetting(Base):
    __tablename__ = "clinic_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    setting_key = Column(String(100), unique=True, index=True, nullable=False)
    setting_value = Column(JSONType)
    description = Column(Text)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


# ============================================
# QUEUE
# ============================================

class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        UniqueConstraint("department", "visit_date", "stn", name="uq_visit_department_date_stn"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    clinic_id = Column(String(20), nullable=False)
    stn = Column(Integer, nullable=False)  # sequence token number
    department = Column(String(50), index=True, nullable=False)
    visit_date = Column(Date, index=True, nullable=False)

    status = Column(String(20), default=VisitStatus.WAITING.value, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PAY_AT_CLINIC.value, nullable=False)
    payment_provider = Column(String(30))
    payment_ref = Column(String(100))

    qr_payload = Column(Text, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True)
    notes = Column(Text)

    checked_in_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    patient = relationship("Patient", back_populates="visits")
    doctor = relationship("Doctor", back_populates="visits")
    transactions = relationship("PaymentTransaction", back_populates="visit")
    consultations = relationship("Consultation", back_populates="visit")


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(20), default="completed")
    transaction_id = Column(String(100))  # gateway payment id for online payments
    processed_by = Column(Integer, ForeignKey("staff_users.id"), nullable=True)
    processed_at = Column(DateTime, default=datetime.now)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    visit = relationship("Visit", back_populates="transactions")


# ============================================
# DOCTOR ROOM
# ============================================

class DoctorSession(Base):
    __tablename__ = "doctor_sessions"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    room_name = Column(String(50))
    session_status = Column(String(20), default=SessionStatus.ACTIVE.value, nullable=False)
    current_patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True)
    started_at = Column(DateTime, default=datetime.now)
    ended_at = Column(DateTime)

    # Relationships
    doctor = relationship("Doctor", back_populates="sessions")
    current_patient = relationship("Patient")
    consultations = relationship("Consultation", back_populates="session", order_by="Consultation.started_at.desc()")


class Consultation(Base):
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("doctor_sessions.id"), nullable=False)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    status = Column(String(20), default=ConsultationStatus.WAITING.value, nullable=False)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    duration_minutes = Column(Integer)
    notes = Column(Text)

    # Relationships
    session = relationship("DoctorSession", back_populates="consultations")
    visit = relationship("Visit", back_populates="consultations")
    patient = relationship("Patient")


class MedicalHistory(Base):
    __tablename__ = "medical_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_uid = Column(String(40), index=True, nullable=False)
    visit_id = Column(Integer, ForeignKey("visits.id"))
    doctor_id = Column(Integer, ForeignKey("doctors.id"))
    diagnosis = Column(Text)
    prescription = Column(Text)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    doctor = relationship("Doctor")


# ============================================
# AUDIT
# ============================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, ForeignKey("staff_users.id"))
    action_type = Column(String(100))
    resource_type = Column(String(50))
    resource_id = Column(String(50))
    action_payload = Column(JSONType)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    actor = relationship("StaffUser", back_populates="audit_logs")
