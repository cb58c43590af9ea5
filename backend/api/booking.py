import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from database.connection import get_db
from database.models import (
    Patient, Visit, Department, Doctor,
    VisitStatus, PaymentStatus, PaymentMode, DoctorStatus
)
from api.settings import get_setting, require_site_open
from api.queue import get_today, read_queue_status, queue_position, estimate_wait_time
from api.payments import attach_payment_order
from api.realtime import change_feed
from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import List, Optional
from datetime import date, datetime
from urllib.parse import urlparse, parse_qs
from io import BytesIO
import qrcode
import base64
import binascii
import json
import os
import re
import secrets
import logging

router = APIRouter(prefix="/api/booking", tags=["Booking"])
logger = logging.getLogger(__name__)

# ==================== CONFIG ====================

CLINIC_CODE = os.getenv("CLINIC_CODE", "CLN1")
QR_PREFIX = "CLINIC_TOKEN:"
STN_ALLOCATION_ATTEMPTS = 3
BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

# ==================== PYDANTIC MODELS ====================

class BookingRequest(BaseModel):
    model_config = {"str_strip_whitespace": True}

    name: str = Field(..., min_length=1, max_length=100)
    age: int = Field(..., ge=1, le=120)
    phone: str = Field(..., min_length=1, max_length=20)
    department: str = Field(..., min_length=1)
    doctor_id: Optional[int] = None
    payment_mode: PaymentMode = PaymentMode.PAY_AT_CLINIC

    email: Optional[EmailStr] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    blood_group: Optional[str] = Field(None, description="A+, B+, O+, etc.")
    allergies: Optional[str] = Field(None, description="Comma separated")
    medical_conditions: Optional[str] = Field(None, description="Comma separated")
    notes: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("phone")
    @classmethod
    def check_phone_digits(cls, value: str) -> str:
        if len(re.sub(r"\D", "", value)) < 10:
            raise ValueError("Phone number must have at least 10 digits")
        return value

# ==================== HELPER FUNCTIONS ====================

def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_uid() -> str:
    """Patient UID like CLN1-MGX3K2P0A7F9QZ (timestamp + random, base36)"""
    timestamp = to_base36(int(datetime.now().timestamp() * 1000))
    random_part = "".join(secrets.choice(BASE36_DIGITS) for _ in range(6))
    return f"{CLINIC_CODE}-{timestamp}{random_part}".upper()


def split_list(text: Optional[str]) -> Optional[List[str]]:
    """'penicillin, dust ,' -> ['penicillin', 'dust']; nothing usable -> None"""
    if not text:
        return None
    items = [item.strip() for item in text.split(",")]
    items = [item for item in items if item]
    return items or None


def build_qr_payload(uid: str, stn: int, visit_date: date) -> dict:
    return {
        "clinic": CLINIC_CODE,
        "uid": uid,
        "stn": stn,
        "visit_date": visit_date.isoformat(),
        "issued_at": int(datetime.now().timestamp() * 1000)
    }


def encode_qr_payload(payload: dict) -> str:
    """Token descriptor -> 'CLINIC_TOKEN:' + base64(JSON)"""
    data = json.dumps(payload, separators=(",", ":"))
    return QR_PREFIX + base64.b64encode(data.encode()).decode()


def decode_qr_payload(qr_data: str) -> Optional[dict]:
    """
    Parse a scanned token. Accepts the prefixed form or a link carrying the
    base64 body in its `token` query parameter. Anything unreadable or
    missing clinic/uid/stn/visit_date gives None.
    """
    if not qr_data:
        return None

    qr_data = qr_data.strip()
    if qr_data.startswith("http"):
        token = parse_qs(urlparse(qr_data).query).get("token")
        if not token:
            return None
        # unescaped '+' in the base64 body arrives as a space
        qr_data = QR_PREFIX + token[0].replace(" ", "+")

    if not qr_data.startswith(QR_PREFIX):
        return None

    try:
        raw = base64.b64decode(qr_data[len(QR_PREFIX):], validate=True)
        payload = json.loads(raw.decode())
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Error parsing QR code: {str(e)}")
        return None

    if not isinstance(payload, dict):
        return None

    if not all(payload.get(key) for key in ("clinic", "uid", "stn", "visit_date")):
        logger.warning(f"Invalid QR payload structure: {payload}")
        return None

    if not isinstance(payload["stn"], int) or isinstance(payload["stn"], bool):
        return None

    return payload


def render_qr_png(qr_data: str) -> str:
    """Base64 PNG of the token QR for display / download"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="#1f2937", back_color="white")
    buffered = BytesIO()
    img.save(buffered, format="PNG")
    return base64.b64encode(buffered.getvalue()).decode()


def find_or_create_patient(db: Session, request: BookingRequest) -> Patient:
    """
    Look the patient up by phone. New patients get a UID; known ones only
    get optional fields filled in or changed, never blanked.
    """
    allergies = split_list(request.allergies)
    conditions = split_list(request.medical_conditions)

    patient = db.query(Patient).filter(
        Patient.phone == request.phone
    ).order_by(Patient.id).first()

    if not patient:
        patient = Patient(
            uid=generate_uid(),
            name=request.name,
            age=request.age,
            phone=request.phone,
            email=request.email,
            address=request.address or None,
            emergency_contact=request.emergency_contact or None,
            blood_group=request.blood_group or None,
            allergies=allergies,
            medical_conditions=conditions
        )
        db.add(patient)
        db.flush()
        return patient

    updates = {}
    for field in ("email", "address", "emergency_contact", "blood_group"):
        value = getattr(request, field)
        if value and value != getattr(patient, field):
            updates[field] = value
    if allergies:
        updates["allergies"] = allergies
    if conditions:
        updates["medical_conditions"] = conditions

    for field, value in updates.items():
        setattr(patient, field, value)
    if updates:
        logger.info(f"Updated patient {patient.uid}: {sorted(updates)}")

    return patient


def next_stn(db: Session, department: str, visit_date: date) -> int:
    """Next token number for a department/day, starting at 1"""
    current = db.query(func.max(Visit.stn)).filter(
        Visit.department == department,
        Visit.visit_date == visit_date
    ).scalar()
    return (current or 0) + 1


def validate_booking_targets(db: Session, request: BookingRequest, visit_date: date) -> Department:
    dept = db.query(Department).filter(
        Department.name == request.department,
        Department.is_active == True
    ).first()
    if not dept:
        raise HTTPException(status_code=400, detail="Selected department is not available")

    issued_today = db.query(func.count(Visit.id)).filter(
        Visit.department == request.department,
        Visit.visit_date == visit_date
    ).scalar()
    max_tokens = get_setting(db, "max_tokens_per_department")
    if max_tokens and issued_today >= max_tokens:
        raise HTTPException(
            status_code=400,
            detail="No more tokens available for this department today"
        )

    if request.doctor_id is not None:
        doctor = db.query(Doctor).filter(
            Doctor.id == request.doctor_id,
            Doctor.status == DoctorStatus.ACTIVE.value
        ).first()
        if not doctor:
            raise HTTPException(status_code=400, detail="Selected doctor is not available")

        doctor_visits = db.query(func.count(Visit.id)).filter(
            Visit.doctor_id == doctor.id,
            Visit.visit_date == visit_date
        ).scalar()
        if doctor.max_patients_per_day and doctor_visits >= doctor.max_patients_per_day:
            raise HTTPException(
                status_code=400,
                detail="Doctor has reached maximum patients for today. Please choose another doctor."
            )

    return dept


def build_confirmation(visit: Visit, patient: Patient, status: dict) -> dict:
    position = queue_position(visit.stn, status["now_serving"])
    return {
        "uid": patient.uid,
        "visit_id": visit.id,
        "stn": visit.stn,
        "department": visit.department,
        "visit_date": str(visit.visit_date),
        "status": visit.status,
        "payment_status": visit.payment_status,
        "qr_payload": visit.qr_payload,
        "now_serving": status["now_serving"],
        "position": position,
        "estimated_wait_minutes": estimate_wait_time(position)
    }

# ==================== API ENDPOINTS ====================

@router.post("/book", response_model=dict, dependencies=[Depends(require_site_open)])
async def book_token(
    request: BookingRequest,
    db: Session = Depends(get_db),
    today: date = Depends(get_today)
):
    """
    Book a queue token for today

    FLOW:
    - Find patient by phone (create or merge new details)
    - Allocate next token number for the department
    - Create visit with QR token
    - Pay now: route to payment step (when online payments are enabled)
    """
    validate_booking_targets(db, request, today)

    payment_status = (
        PaymentStatus.PENDING if request.payment_mode == PaymentMode.PAY_NOW
        else PaymentStatus.PAY_AT_CLINIC
    )

    visit = None
    patient = None
    for attempt in range(1, STN_ALLOCATION_ATTEMPTS + 1):
        try:
            patient = find_or_create_patient(db, request)
            stn = next_stn(db, request.department, today)

            visit = Visit(
                patient_id=patient.id,
                clinic_id=CLINIC_CODE,
                stn=stn,
                department=request.department,
                visit_date=today,
                status=VisitStatus.WAITING.value,
                payment_status=payment_status.value,
                qr_payload=encode_qr_payload(build_qr_payload(patient.uid, stn, today)),
                doctor_id=request.doctor_id,
                notes=request.notes
            )
            db.add(visit)
            db.commit()
            break
        except IntegrityError as e:
            # Another booking took the same token number; start over
            db.rollback()
            visit = None
            logger.warning(f"Token allocation conflict ({request.department}, attempt {attempt}): {str(e.orig)}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Booking error: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to book token. Please try again.")

    if visit is None:
        raise HTTPException(
            status_code=409,
            detail="Could not allocate a token number. Please try again."
        )

    db.refresh(visit)
    db.refresh(patient)
    logger.info(f"Token booked: {visit.department} #{visit.stn} for {patient.uid}")

    payment_required = (
        request.payment_mode == PaymentMode.PAY_NOW
        and bool(get_setting(db, "enable_online_payments"))
    )
    payment_details = attach_payment_order(db, visit) if payment_required else None

    await change_feed.publish("visits", "INSERT", visit.id)

    status, _, _ = read_queue_status(db, today, visit.department)
    response = build_confirmation(visit, patient, status)
    response.update({
        "payment_required": payment_required,
        "next_step": "complete_payment" if payment_required else "show_confirmation",
        "payment_details": payment_details
    })
    return response


@router.get("/{visit_id}", response_model=dict)
async def get_booking(
    visit_id: int,
    db: Session = Depends(get_db)
):
    """Booking confirmation with live position"""
    visit = db.query(Visit).filter(Visit.id == visit_id).first()
    if not visit:
        raise HTTPException(status_code=404, detail="Booking not found")

    status, _, _ = read_queue_status(db, visit.visit_date, visit.department)
    return build_confirmation(visit, visit.patient, status)


@router.get("/{visit_id}/qr", response_model=dict)
async def get_booking_qr(
    visit_id: int,
    db: Session = Depends(get_db)
):
    """QR image of the token, for the confirmation screen / download"""
    visit = db.query(Visit).filter(Visit.id == visit_id).first()
    if not visit:
        raise HTTPException(status_code=404, detail="Booking not found")

    return {
        "visit_id": visit.id,
        "stn": visit.stn,
        "filename": f"clinic-token-{visit.stn}.png",
        "qr_payload": visit.qr_payload,
        "image_base64": render_qr_png(visit.qr_payload)
    }
