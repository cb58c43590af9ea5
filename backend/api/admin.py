import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from database.connection import get_db
from database.models import (
    Visit, Department, PaymentTransaction, StaffUser,
    VisitStatus, PaymentStatus, PaymentMethod, StaffRole
)
from api.auth import require_roles
from api.audit import log_action
from api.booking import decode_qr_payload
from api.queue import get_today, summarize_queue
from api.realtime import change_feed
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal
import logging

router = APIRouter(prefix="/api/admin", tags=["Admin Console"])
logger = logging.getLogger(__name__)

console_user = require_roles(StaffRole.ADMIN, StaffRole.STAFF)

# ==================== VISIT STATE MACHINE ====================

# The one step the console offers for each status
NEXT_VISIT_STATUS: Dict[VisitStatus, VisitStatus] = {
    VisitStatus.WAITING: VisitStatus.CHECKED_IN,
    VisitStatus.CHECKED_IN: VisitStatus.IN_SERVICE,
    VisitStatus.IN_SERVICE: VisitStatus.COMPLETED,
}

# Regular flow; the doctor room may call a waiting patient straight in
ALLOWED_TRANSITIONS: Dict[VisitStatus, set] = {
    VisitStatus.WAITING: {VisitStatus.CHECKED_IN, VisitStatus.IN_SERVICE},
    VisitStatus.CHECKED_IN: {VisitStatus.IN_SERVICE},
    VisitStatus.IN_SERVICE: {VisitStatus.COMPLETED},
}

# Side states, only reachable by administrative override (target -> allowed sources)
OVERRIDE_TRANSITIONS: Dict[VisitStatus, set] = {
    VisitStatus.HELD: {VisitStatus.WAITING, VisitStatus.CHECKED_IN, VisitStatus.IN_SERVICE},
    VisitStatus.EXPIRED: {VisitStatus.WAITING, VisitStatus.CHECKED_IN, VisitStatus.IN_SERVICE, VisitStatus.HELD},
    VisitStatus.WAITING: {VisitStatus.HELD},  # release a held token
}

ACTION_LABELS = {
    VisitStatus.CHECKED_IN: ("check_in", "Check In"),
    VisitStatus.IN_SERVICE: ("start_service", "Start Service"),
    VisitStatus.COMPLETED: ("complete", "Complete"),
}


class IllegalTransition(Exception):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move visit from {current} to {target}")


def apply_visit_transition(
    visit: Visit,
    target: VisitStatus,
    now: Optional[datetime] = None,
    override: bool = False
) -> str:
    """
    Move a visit to `target`, stamping check-in / completion times.
    Returns the previous status. Raises IllegalTransition.
    """
    now = now or datetime.now()
    current = VisitStatus(visit.status)

    if override:
        legal = current in OVERRIDE_TRANSITIONS.get(target, set())
    else:
        legal = target in ALLOWED_TRANSITIONS.get(current, set())
    if not legal:
        raise IllegalTransition(current.value, target.value)

    if target == VisitStatus.CHECKED_IN:
        visit.checked_in_at = now
    elif target == VisitStatus.IN_SERVICE:
        visit.checked_in_at = visit.checked_in_at or now
    elif target == VisitStatus.COMPLETED:
        visit.completed_at = now

    visit.status = target.value
    return current.value


def available_actions(visit: Visit, fee: Optional[Decimal] = None) -> List[dict]:
    """Buttons the console shows: the next status step and the payment step"""
    actions = []

    next_status = NEXT_VISIT_STATUS.get(VisitStatus(visit.status))
    if next_status:
        action, label = ACTION_LABELS[next_status]
        actions.append({"action": action, "label": label, "status": next_status.value})

    if visit.payment_status == PaymentStatus.PAY_AT_CLINIC:
        actions.append({
            "action": "collect_payment",
            "label": "Collect Payment",
            "suggested_amount": float(fee) if fee is not None else None,
            "methods": [m.value for m in PaymentMethod]
        })
    elif visit.payment_status == PaymentStatus.PENDING:
        actions.append({"action": "mark_paid", "label": "Mark Paid"})

    return actions

# ==================== PYDANTIC MODELS ====================

class StatusUpdateRequest(BaseModel):
    status: VisitStatus

class OverrideRequest(BaseModel):
    status: VisitStatus
    reason: Optional[str] = Field(None, max_length=200)

class QRScanRequest(BaseModel):
    qr_data: str = Field(..., min_length=1)

class CollectPaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.CASH

# ==================== HELPER FUNCTIONS ====================

def department_fees(db: Session) -> Dict[str, Decimal]:
    return {d.name: d.consultation_fee for d in db.query(Department).all()}


def format_visit(visit: Visit, fee: Optional[Decimal] = None) -> dict:
    patient = visit.patient
    return {
        "id": visit.id,
        "stn": visit.stn,
        "department": visit.department,
        "visit_date": str(visit.visit_date),
        "status": visit.status,
        "payment_status": visit.payment_status,
        "doctor_id": visit.doctor_id,
        "notes": visit.notes,
        "patient": {
            "id": patient.id,
            "uid": patient.uid,
            "name": patient.name,
            "age": patient.age,
            "phone": patient.phone
        } if patient else None,
        "checked_in_at": visit.checked_in_at.isoformat() if visit.checked_in_at else None,
        "completed_at": visit.completed_at.isoformat() if visit.completed_at else None,
        "created_at": visit.created_at.isoformat() if visit.created_at else None,
        "actions": available_actions(visit, fee)
    }


def matches_search(visit: Visit, search: str) -> bool:
    search = search.strip().lower()
    patient = visit.patient
    return (
        search in str(visit.stn)
        or (patient is not None and (
            search in patient.uid.lower()
            or search in patient.name.lower()
            or search in patient.phone
        ))
    )


def get_visit_or_404(db: Session, visit_id: int) -> Visit:
    visit = db.query(Visit).options(
        joinedload(Visit.patient)
    ).filter(Visit.id == visit_id).first()
    if not visit:
        raise HTTPException(status_code=404, detail="Visit not found")
    return visit

# ==================== API ENDPOINTS ====================

@router.get("/visits", response_model=dict)
async def list_visits(
    visit_date: Optional[date] = Query(None, description="Defaults to today"),
    status: Optional[VisitStatus] = Query(None),
    department: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Token no., UID, name or phone"),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    current_user: StaffUser = Depends(console_user)
):
    """Queue console listing with filters and counters"""
    visit_date = visit_date or today
    try:
        visits = db.query(Visit).options(
            joinedload(Visit.patient)
        ).filter(Visit.visit_date == visit_date).order_by(Visit.stn, Visit.department).all()
        fees = department_fees(db)
    except SQLAlchemyError as e:
        logger.error(f"Error fetching visits: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load visits")

    filtered = [
        v for v in visits
        if (not status or v.status == status)
        and (not department or v.department == department)
        and (not search or matches_search(v, search))
    ]

    summary = summarize_queue(visits)
    return {
        "visit_date": str(visit_date),
        "stats": {
            "total": len(visits),
            "waiting": summary["total_waiting"],
            "in_service": sum(1 for v in visits if v.status == VisitStatus.IN_SERVICE),
            "completed": sum(1 for v in visits if v.status == VisitStatus.COMPLETED),
            "now_serving": summary["now_serving"]
        },
        "departments": sorted({v.department for v in visits}),
        "total": len(filtered),
        "visits": [format_visit(v, fees.get(v.department)) for v in filtered]
    }


@router.get("/visits/{visit_id}", response_model=dict)
async def get_visit(
    visit_id: int,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(console_user)
):
    visit = get_visit_or_404(db, visit_id)
    fees = department_fees(db)
    return format_visit(visit, fees.get(visit.department))


@router.post("/visits/{visit_id}/status", response_model=dict)
async def update_visit_status(
    visit_id: int,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(console_user)
):
    """Advance a visit one step: waiting -> checked_in -> in_service -> completed"""
    visit = get_visit_or_404(db, visit_id)

    if NEXT_VISIT_STATUS.get(VisitStatus(visit.status)) != request.status:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot move visit from {visit.status} to {request.status.value}"
        )

    try:
        old_status = apply_visit_transition(visit, request.status)
        db.commit()
        db.refresh(visit)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating visit status: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update status")

    log_action(db, current_user.id, "UPDATE_VISIT_STATUS", "visit", str(visit.id), {
        "old_status": old_status,
        "new_status": visit.status
    })
    await change_feed.publish("visits", "UPDATE", visit.id)

    return {
        "status": "success",
        "message": f"Visit status updated to {visit.status.replace('_', ' ')}",
        "visit": format_visit(visit)
    }


@router.post("/visits/{visit_id}/override", response_model=dict)
async def override_visit_status(
    visit_id: int,
    request: OverrideRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(console_user)
):
    """Put a token on hold, expire it, or release a held token back to waiting"""
    visit = get_visit_or_404(db, visit_id)

    try:
        old_status = apply_visit_transition(visit, request.status, override=True)
    except IllegalTransition as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        db.commit()
        db.refresh(visit)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error overriding visit status: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update status")

    log_action(db, current_user.id, "OVERRIDE_VISIT_STATUS", "visit", str(visit.id), {
        "old_status": old_status,
        "new_status": visit.status,
        "reason": request.reason
    })
    await change_feed.publish("visits", "UPDATE", visit.id)

    return {
        "status": "success",
        "message": f"Visit status updated to {visit.status.replace('_', ' ')}",
        "visit": format_visit(visit)
    }


@router.post("/scan", response_model=dict)
async def scan_token(
    request: QRScanRequest,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    current_user: StaffUser = Depends(console_user)
):
    """
    Reception QR check-in

    - Finds the visit by token number + date and matching UID
    - Only today's tokens are accepted
    - A waiting visit is checked in
    """
    payload = decode_qr_payload(request.qr_data)
    if not payload:
        raise HTTPException(status_code=400, detail="Invalid QR code. Please try again.")

    try:
        scanned_date = date.fromisoformat(payload["visit_date"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid QR code. Please try again.")

    candidates = db.query(Visit).options(
        joinedload(Visit.patient)
    ).filter(
        Visit.stn == payload["stn"],
        Visit.visit_date == scanned_date
    ).all()

    visit = None
    for candidate in candidates:
        stored = decode_qr_payload(candidate.qr_payload)
        if stored and stored["uid"] == payload["uid"]:
            visit = candidate
            break

    if not visit:
        raise HTTPException(status_code=404, detail="Visit not found. Please check the QR code.")

    if visit.visit_date != today:
        raise HTTPException(status_code=400, detail="This QR code is not valid for today.")

    checked_in = False
    if visit.status == VisitStatus.WAITING:
        try:
            apply_visit_transition(visit, VisitStatus.CHECKED_IN)
            db.commit()
            db.refresh(visit)
            checked_in = True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error checking in visit {visit.id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to check in patient. Please try again.")

        log_action(db, current_user.id, "QR_CHECK_IN", "visit", str(visit.id), {
            "stn": visit.stn,
            "uid": payload["uid"]
        })
        await change_feed.publish("visits", "UPDATE", visit.id)

    fees = department_fees(db)
    return {
        "checked_in": checked_in,
        "message": "Patient checked in successfully!" if checked_in else f"Visit is {visit.status.replace('_', ' ')}",
        "visit": format_visit(visit, fees.get(visit.department))
    }


@router.post("/visits/{visit_id}/payment", response_model=dict)
async def collect_payment(
    visit_id: int,
    request: CollectPaymentRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(console_user)
):
    """Record a payment taken at the desk for a pay-at-clinic token"""
    visit = get_visit_or_404(db, visit_id)

    if visit.payment_status != PaymentStatus.PAY_AT_CLINIC:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot collect payment for a visit that is {visit.payment_status.replace('_', ' ')}"
        )

    try:
        transaction = PaymentTransaction(
            visit_id=visit.id,
            patient_id=visit.patient_id,
            amount=request.amount,
            payment_method=request.method.value,
            status="completed",
            processed_by=current_user.id,
            processed_at=datetime.now()
        )
        db.add(transaction)
        visit.payment_status = PaymentStatus.PAID.value
        db.commit()
        db.refresh(transaction)
        db.refresh(visit)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error processing payment: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to process payment")

    log_action(db, current_user.id, "PROCESS_PAYMENT", "visit", str(visit.id), {
        "amount": float(request.amount),
        "method": request.method.value,
        "transaction_id": transaction.id
    })
    await change_feed.publish("visits", "UPDATE", visit.id)

    return {
        "status": "success",
        "message": f"Payment of ₹{request.amount} processed successfully",
        "transaction_id": transaction.id,
        "visit": format_visit(visit)
    }


@router.post("/visits/{visit_id}/mark-paid", response_model=dict)
async def mark_paid(
    visit_id: int,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(console_user)
):
    """Flip a pending (pay-now) token to paid"""
    visit = get_visit_or_404(db, visit_id)

    if visit.payment_status != PaymentStatus.PENDING:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot mark a visit that is {visit.payment_status.replace('_', ' ')} as paid"
        )

    old_payment_status = visit.payment_status
    try:
        visit.payment_status = PaymentStatus.PAID.value
        db.commit()
        db.refresh(visit)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating payment status: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update payment status")

    log_action(db, current_user.id, "UPDATE_PAYMENT_STATUS", "visit", str(visit.id), {
        "old_payment_status": old_payment_status,
        "new_payment_status": visit.payment_status
    })
    await change_feed.publish("visits", "UPDATE", visit.id)

    return {
        "status": "success",
        "message": "Payment status updated to paid",
        "visit": format_visit(visit)
    }
