# Database Package - Centralized imports
# Allows easy importing of models, connection utilities, and ORM objects

from .connection import (
    engine,
    Base,
    SessionLocal,
    get_db,
)

from .models import (
    # Enums
    VisitStatus,
    PaymentStatus,
    PaymentMode,
    PaymentMethod,
    DoctorStatus,
    SessionStatus,
    ConsultationStatus,
    StaffRole,

    # Staff
    StaffUser,
    AuditLog,

    # Patients & Queue
    Patient,
    Visit,
    PaymentTransaction,
    MedicalHistory,

    # Clinic
    Department,
    Doctor,
    ClinicSetting,

    # Doctor Room
    DoctorSession,
    Consultation,
)

__all__ = [
    # Connection
    "engine",
    "Base",
    "SessionLocal",
    "get_db",

    # Enums
    "VisitStatus",
    "PaymentStatus",
    "PaymentMode",
    "PaymentMethod",
    "DoctorStatus",
    "SessionStatus",
    "ConsultationStatus",
    "StaffRole",

    # Staff
    "StaffUser",
    "AuditLog",

    # Patients & Queue
    "Patient",
    "Visit",
    "PaymentTransaction",
    "MedicalHistory",

    # Clinic
    "Department",
    "Doctor",
    "ClinicSetting",

    # Doctor Room
    "DoctorSession",
    "Consultation",
]
