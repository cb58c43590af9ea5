import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, and_
from sqlalchemy.exc import SQLAlchemyError
from database.connection import get_db
from database.models import (
    Doctor, DoctorSession, Consultation, Visit, MedicalHistory, StaffUser,
    DoctorStatus, SessionStatus, ConsultationStatus, VisitStatus, StaffRole
)
from api.auth import require_roles
from api.audit import log_action
from api.admin import apply_visit_transition, IllegalTransition
from api.queue import get_today, WAITING_STATUSES
from api.realtime import change_feed
from api.settings import format_doctor
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime
import logging

router = APIRouter(prefix="/api/doctor", tags=["Doctor Room"])
logger = logging.getLogger(__name__)

room_user = require_roles(StaffRole.DOCTOR, StaffRole.ADMIN)

OPEN_SESSION_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.BREAK.value)

# ==================== PYDANTIC MODELS ====================

class StartSessionRequest(BaseModel):
    model_config = {"str_strip_whitespace": True}

    doctor_id: int
    room_name: str = Field(..., min_length=1, max_length=50)

class SessionStatusRequest(BaseModel):
    status: SessionStatus

class Medicine(BaseModel):
    name: str = Field(..., min_length=1)
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""

class PrescriptionRequest(BaseModel):
    diagnosis: str = Field(..., min_length=1)
    symptoms: str = ""
    medicines: List[Medicine] = []
    tests: str = ""
    notes: str = ""
    follow_up_date: Optional[date] = None

# ==================== HELPER FUNCTIONS ====================

def check_doctor_access(current_user: StaffUser, doctor_id: int):
    """Doctors only drive their own room; admins can drive any"""
    if current_user.role == StaffRole.DOCTOR and current_user.doctor_id != doctor_id:
        raise HTTPException(status_code=403, detail="You can only manage your own sessions")


def consultation_minutes(started_at: datetime, completed_at: datetime) -> int:
    """Whole minutes elapsed, rounded down"""
    return max(0, int((completed_at - started_at).total_seconds() // 60))


def format_prescription(request: PrescriptionRequest) -> str:
    medicines = "\n\n".join(
        f"{index}. {med.name} - {med.dosage}\n"
        f"   Frequency: {med.frequency}\n"
        f"   Duration: {med.duration}\n"
        f"   Instructions: {med.instructions}"
        for index, med in enumerate(request.medicines, start=1)
    )
    follow_up = request.follow_up_date.isoformat() if request.follow_up_date else ""
    return (
        f"DIAGNOSIS: {request.diagnosis}\n"
        f"SYMPTOMS: {request.symptoms}\n\n"
        f"PRESCRIPTION:\n{medicines}\n\n"
        f"TESTS RECOMMENDED: {request.tests}\n"
        f"NOTES: {request.notes}\n"
        f"FOLLOW-UP: {follow_up}"
    ).strip()


def get_open_session(db: Session, doctor_id: int) -> Optional[DoctorSession]:
    return db.query(DoctorSession).filter(
        DoctorSession.doctor_id == doctor_id,
        DoctorSession.session_status.in_(OPEN_SESSION_STATUSES)
    ).order_by(DoctorSession.started_at.desc(), DoctorSession.id.desc()).first()


def open_consultation(db: Session, session_ids: List[int]) -> Optional[Consultation]:
    if not session_ids:
        return None
    return db.query(Consultation).filter(
        Consultation.session_id.in_(session_ids),
        Consultation.status == ConsultationStatus.IN_PROGRESS.value
    ).first()


def get_session_or_404(db: Session, session_id: int, current_user: StaffUser) -> DoctorSession:
    session = db.query(DoctorSession).filter(DoctorSession.id == session_id).first()
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    check_doctor_access(current_user, session.doctor_id)
    return session


def get_consultation_or_404(db: Session, consultation_id: int, current_user: StaffUser) -> Consultation:
    consultation = db.query(Consultation).options(
        joinedload(Consultation.visit),
        joinedload(Consultation.session)
    ).filter(Consultation.id == consultation_id).first()
    if not consultation:
        raise HTTPException(status_code=404, detail="Consultation not found")
    check_doctor_access(current_user, consultation.doctor_id)
    return consultation


def load_waiting_patients(db: Session, doctor: Doctor, visit_date: date) -> List[Visit]:
    """
    The doctor's queue for the day: visits booked with this doctor, plus
    unassigned visits of the doctor's department, by token number
    """
    return db.query(Visit).options(
        joinedload(Visit.patient)
    ).filter(
        Visit.visit_date == visit_date,
        Visit.status.in_(WAITING_STATUSES),
        or_(
            Visit.doctor_id == doctor.id,
            and_(Visit.doctor_id.is_(None), Visit.department == doctor.specialization)
        )
    ).order_by(Visit.stn).all()


def format_session(session: DoctorSession) -> dict:
    return {
        "id": session.id,
        "doctor_id": session.doctor_id,
        "room_name": session.room_name,
        "session_status": session.session_status,
        "current_patient_id": session.current_patient_id,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "ended_at": session.ended_at.isoformat() if session.ended_at else None
    }


def format_consultation(consultation: Consultation) -> dict:
    visit = consultation.visit
    patient = consultation.patient
    return {
        "id": consultation.id,
        "session_id": consultation.session_id,
        "visit_id": consultation.visit_id,
        "stn": visit.stn if visit else None,
        "patient": {
            "uid": patient.uid,
            "name": patient.name,
            "age": patient.age,
            "phone": patient.phone,
            "allergies": patient.allergies or [],
            "medical_conditions": patient.medical_conditions or []
        } if patient else None,
        "status": consultation.status,
        "started_at": consultation.started_at.isoformat() if consultation.started_at else None,
        "completed_at": consultation.completed_at.isoformat() if consultation.completed_at else None,
        "duration_minutes": consultation.duration_minutes
    }


def format_waiting_visit(visit: Visit) -> dict:
    return {
        "visit_id": visit.id,
        "stn": visit.stn,
        "department": visit.department,
        "status": visit.status,
        "payment_status": visit.payment_status,
        "patient_name": visit.patient.name if visit.patient else None,
        "patient_age": visit.patient.age if visit.patient else None
    }

# ==================== API ENDPOINTS ====================

@router.get("/doctors", response_model=dict)
async def list_room_doctors(
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(room_user)
):
    """Doctors that can open a room session"""
    doctors = db.query(Doctor).filter(
        Doctor.status == DoctorStatus.ACTIVE.value
    ).order_by(Doctor.name).all()
    return {"total": len(doctors), "doctors": [format_doctor(d) for d in doctors]}


@router.post("/sessions/start", response_model=dict)
async def start_session(
    request: StartSessionRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(room_user)
):
    """
    Open a room session for a doctor.
    Any session the doctor still has open (active or on break) is closed first.
    """
    check_doctor_access(current_user, request.doctor_id)

    doctor = db.query(Doctor).filter(Doctor.id == request.doctor_id).first()
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")

    open_sessions = db.query(DoctorSession).filter(
        DoctorSession.doctor_id == doctor.id,
        DoctorSession.session_status.in_(OPEN_SESSION_STATUSES)
    ).all()
    if open_consultation(db, [s.id for s in open_sessions]):
        raise HTTPException(status_code=400, detail="Complete the current consultation before starting a new session")

    now = datetime.now()
    try:
        for old in open_sessions:
            old.session_status = SessionStatus.INACTIVE.value
            old.ended_at = now
            old.current_patient_id = None

        session = DoctorSession(
            doctor_id=doctor.id,
            room_name=request.room_name,
            session_status=SessionStatus.ACTIVE.value,
            started_at=now
        )
        db.add(session)
        db.commit()
        db.refresh(session)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error starting session: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to start session")

    log_action(db, current_user.id, "START_SESSION", "doctor_session", str(session.id), {
        "doctor_id": doctor.id,
        "room_name": session.room_name,
        "closed_sessions": [s.id for s in open_sessions]
    })
    await change_feed.publish("doctor_sessions", "INSERT", session.id)

    return {
        "status": "success",
        "message": f"Session started for room {session.room_name}",
        "session": format_session(session)
    }


@router.get("/{doctor_id}/session", response_model=dict)
async def get_doctor_session(
    doctor_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    current_user: StaffUser = Depends(room_user)
):
    """Doctor room screen: open session, its consultations and the waiting queue"""
    check_doctor_access(current_user, doctor_id)

    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")

    session = get_open_session(db, doctor.id)
    waiting = load_waiting_patients(db, doctor, today)

    consultations = []
    current = None
    if session:
        consultations = session.consultations
        current = next(
            (c for c in consultations if c.status == ConsultationStatus.IN_PROGRESS),
            None
        )

    return {
        "doctor": format_doctor(doctor),
        "session": format_session(session) if session else None,
        "current_consultation": format_consultation(current) if current else None,
        "consultations": [format_consultation(c) for c in consultations],
        "waiting_patients": [format_waiting_visit(v) for v in waiting],
        "stats": {
            "waiting": len(waiting),
            "completed": sum(1 for c in consultations if c.status == ConsultationStatus.COMPLETED)
        }
    }


@router.post("/sessions/{session_id}/status", response_model=dict)
async def update_session_status(
    session_id: int,
    request: SessionStatusRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(room_user)
):
    """Toggle an open session between active and break"""
    session = get_session_or_404(db, session_id, current_user)

    if session.session_status not in OPEN_SESSION_STATUSES:
        raise HTTPException(status_code=400, detail="Session has already ended")

    if request.status not in (SessionStatus.ACTIVE, SessionStatus.BREAK):
        raise HTTPException(status_code=400, detail="Use the end endpoint to close a session")

    old_status = session.session_status
    try:
        session.session_status = request.status.value
        db.commit()
        db.refresh(session)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating session status: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update session status")

    log_action(db, current_user.id, "UPDATE_SESSION_STATUS", "doctor_session", str(session.id), {
        "old_status": old_status,
        "new_status": session.session_status
    })
    await change_feed.publish("doctor_sessions", "UPDATE", session.id)

    return {"status": "success", "session": format_session(session)}


@router.post("/sessions/{session_id}/end", response_model=dict)
async def end_session(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(room_user)
):
    session = get_session_or_404(db, session_id, current_user)

    if session.session_status not in OPEN_SESSION_STATUSES:
        raise HTTPException(status_code=400, detail="Session has already ended")

    if open_consultation(db, [session.id]):
        raise HTTPException(status_code=400, detail="Complete the current consultation before ending the session")

    try:
        session.session_status = SessionStatus.INACTIVE.value
        session.ended_at = datetime.now()
        session.current_patient_id = None
        db.commit()
        db.refresh(session)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error ending session: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to end session")

    log_action(db, current_user.id, "END_SESSION", "doctor_session", str(session.id), {
        "doctor_id": session.doctor_id
    })
    await change_feed.publish("doctor_sessions", "UPDATE", session.id)

    return {"status": "success", "message": "Session ended", "session": format_session(session)}


@router.post("/sessions/{session_id}/call-next", response_model=dict)
async def call_next_patient(
    session_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    current_user: StaffUser = Depends(room_user)
):
    """
    Call the next patient into the room

    - Session must be active (not on break)
    - Previous consultation must be completed first
    - Lowest waiting / checked-in token goes in service
    """
    session = get_session_or_404(db, session_id, current_user)

    if session.session_status == SessionStatus.BREAK:
        raise HTTPException(status_code=400, detail="Session is on break. Resume to call the next patient.")
    if session.session_status != SessionStatus.ACTIVE:
        raise HTTPException(status_code=400, detail="Session has already ended")

    if open_consultation(db, [session.id]):
        raise HTTPException(status_code=400, detail="Complete the current consultation first")

    waiting = load_waiting_patients(db, session.doctor, today)
    if not waiting:
        raise HTTPException(status_code=404, detail="No patients waiting in queue")

    visit = waiting[0]
    now = datetime.now()
    try:
        apply_visit_transition(visit, VisitStatus.IN_SERVICE, now)
    except IllegalTransition as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        consultation = Consultation(
            session_id=session.id,
            visit_id=visit.id,
            patient_id=visit.patient_id,
            doctor_id=session.doctor_id,
            status=ConsultationStatus.IN_PROGRESS.value,
            started_at=now
        )
        db.add(consultation)
        session.current_patient_id = visit.patient_id
        db.commit()
        db.refresh(consultation)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error calling next patient: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to call next patient")

    logger.info(f"Room {session.room_name}: calling token #{visit.stn} ({visit.department})")
    log_action(db, current_user.id, "CALL_NEXT_PATIENT", "visit", str(visit.id), {
        "session_id": session.id,
        "consultation_id": consultation.id,
        "stn": visit.stn
    })
    await change_feed.publish("visits", "UPDATE", visit.id)
    await change_feed.publish("consultations", "INSERT", consultation.id)

    return {
        "status": "success",
        "message": f"Next patient called. Token number {visit.stn}",
        "consultation": format_consultation(consultation)
    }


@router.post("/consultations/{consultation_id}/complete", response_model=dict)
async def complete_consultation(
    consultation_id: int,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(room_user)
):
    consultation = get_consultation_or_404(db, consultation_id, current_user)

    if consultation.status != ConsultationStatus.IN_PROGRESS:
        raise HTTPException(status_code=400, detail="Consultation is not in progress")

    now = datetime.now()
    visit = consultation.visit
    # reception may have held, expired or released the visit mid-consultation
    cancelled = visit.status not in (VisitStatus.IN_SERVICE, VisitStatus.COMPLETED)
    if visit.status == VisitStatus.IN_SERVICE:
        apply_visit_transition(visit, VisitStatus.COMPLETED, now)

    try:
        if cancelled:
            consultation.status = ConsultationStatus.CANCELLED.value
        else:
            consultation.status = ConsultationStatus.COMPLETED.value
        consultation.completed_at = now
        consultation.duration_minutes = consultation_minutes(consultation.started_at or now, now)

        session = consultation.session
        if session and session.current_patient_id == consultation.patient_id:
            session.current_patient_id = None
        db.commit()
        db.refresh(consultation)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error completing consultation: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to complete consultation")

    log_action(db, current_user.id, "COMPLETE_CONSULTATION", "consultation", str(consultation.id), {
        "visit_id": visit.id,
        "visit_status": visit.status,
        "outcome": consultation.status,
        "duration_minutes": consultation.duration_minutes
    })
    await change_feed.publish("consultations", "UPDATE", consultation.id)
    await change_feed.publish("visits", "UPDATE", visit.id)

    return {
        "status": "success",
        "message": f"Consultation closed, visit is {visit.status}" if cancelled else "Consultation completed",
        "consultation": format_consultation(consultation)
    }


@router.post("/consultations/{consultation_id}/prescription", response_model=dict)
async def save_prescription(
    consultation_id: int,
    request: PrescriptionRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(room_user)
):
    """Store the prescription in the patient's medical history"""
    consultation = get_consultation_or_404(db, consultation_id, current_user)

    entry = MedicalHistory(
        patient_uid=consultation.patient.uid,
        visit_id=consultation.visit_id,
        doctor_id=consultation.doctor_id,
        diagnosis=request.diagnosis,
        prescription=format_prescription(request),
        notes=request.notes or None
    )
    try:
        db.add(entry)
        db.commit()
        db.refresh(entry)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving prescription: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to save prescription")

    log_action(db, current_user.id, "SAVE_PRESCRIPTION", "medical_history", str(entry.id), {
        "consultation_id": consultation.id,
        "patient_uid": entry.patient_uid
    })

    return {
        "status": "success",
        "message": "Prescription saved successfully",
        "medical_history_id": entry.id,
        "prescription": entry.prescription
    }
