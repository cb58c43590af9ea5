import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from database.connection import get_db
from database.models import Patient, Visit, MedicalHistory, StaffUser, StaffRole
from api.auth import require_roles
from api.booking import CLINIC_CODE
from typing import List
import logging

router = APIRouter(prefix="/api/patients", tags=["Patients"])
logger = logging.getLogger(__name__)

staff_user = require_roles(StaffRole.ADMIN, StaffRole.STAFF, StaffRole.DOCTOR)

# ==================== HELPER FUNCTIONS ====================

def search_patients(db: Session, query: str, limit: int = 20) -> List[Patient]:
    """
    UID (clinic prefix), phone (digits only) or name substring, in that order
    """
    query = query.strip()
    patients = db.query(Patient)

    if query.upper().startswith(f"{CLINIC_CODE}-"):
        patients = patients.filter(Patient.uid == query.upper())
    elif query.isdigit():
        patients = patients.filter(Patient.phone == query)
    else:
        patients = patients.filter(func.lower(Patient.name).contains(query.lower()))

    return patients.order_by(Patient.name).limit(limit).all()


def format_patient(patient: Patient) -> dict:
    return {
        "id": patient.id,
        "uid": patient.uid,
        "name": patient.name,
        "age": patient.age,
        "phone": patient.phone,
        "email": patient.email,
        "address": patient.address,
        "emergency_contact": patient.emergency_contact,
        "blood_group": patient.blood_group,
        "allergies": patient.allergies or [],
        "medical_conditions": patient.medical_conditions or []
    }

# ==================== API ENDPOINTS ====================

@router.get("/lookup", response_model=dict)
async def lookup_patients(
    query: str = Query(..., min_length=1, description="UID, phone or name"),
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(staff_user)
):
    patients = search_patients(db, query)
    return {
        "total": len(patients),
        "patients": [format_patient(p) for p in patients]
    }


@router.get("/{uid}/history", response_model=dict)
async def patient_history(
    uid: str,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(staff_user)
):
    """Past visits and medical history entries, newest first"""
    patient = db.query(Patient).filter(Patient.uid == uid.strip().upper()).first()
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    visits = db.query(Visit).options(
        joinedload(Visit.doctor)
    ).filter(
        Visit.patient_id == patient.id
    ).order_by(Visit.visit_date.desc(), Visit.id.desc()).all()

    history = db.query(MedicalHistory).options(
        joinedload(MedicalHistory.doctor)
    ).filter(
        MedicalHistory.patient_uid == patient.uid
    ).order_by(MedicalHistory.created_at.desc(), MedicalHistory.id.desc()).all()

    return {
        "patient": format_patient(patient),
        "visits": [
            {
                "id": v.id,
                "stn": v.stn,
                "department": v.department,
                "visit_date": str(v.visit_date),
                "status": v.status,
                "payment_status": v.payment_status,
                "doctor_name": v.doctor.name if v.doctor else None
            }
            for v in visits
        ],
        "medical_history": [
            {
                "id": h.id,
                "visit_id": h.visit_id,
                "doctor_name": h.doctor.name if h.doctor else None,
                "diagnosis": h.diagnosis,
                "prescription": h.prescription,
                "notes": h.notes,
                "created_at": h.created_at.isoformat() if h.created_at else None
            }
            for h in history
        ]
    }
