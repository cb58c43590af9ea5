import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from database.connection import get_db
from database.models import Visit, Department, Doctor, VisitStatus, DoctorStatus
from api.settings import get_setting, require_site_open
from typing import Iterable, List, Optional, Tuple
from datetime import date
import os
import logging

router = APIRouter(prefix="/api/queue", tags=["Queue"])
logger = logging.getLogger(__name__)

# ==================== CONFIG ====================

WAIT_MINUTES_PER_PATIENT = int(os.getenv("WAIT_MINUTES_PER_PATIENT", "10"))

WAITING_STATUSES = (VisitStatus.WAITING.value, VisitStatus.CHECKED_IN.value)

QUEUE_READ_ERROR = "Failed to load queue status"

# ==================== HELPER FUNCTIONS ====================

def get_today() -> date:
    """
    Clinic-local "today".
    Endpoints take this as a dependency so tests can pin the date.
    """
    return date.today()


def compute_now_serving(rows: Iterable) -> int:
    """
    Token currently at the counter:
    - lowest in-service token, else
    - highest completed token, else
    - one before the first token of the day, else 0
    """
    rows = list(rows)
    in_service = [v.stn for v in rows if v.status == VisitStatus.IN_SERVICE]
    if in_service:
        return min(in_service)

    completed = [v.stn for v in rows if v.status == VisitStatus.COMPLETED]
    if completed:
        return max(completed)

    if rows:
        return min(v.stn for v in rows) - 1

    return 0


def summarize_queue(rows: Iterable) -> dict:
    """Reduce a day's visit rows to {now_serving, total_waiting}"""
    rows = list(rows)
    return {
        "now_serving": compute_now_serving(rows),
        "total_waiting": sum(1 for v in rows if v.status in WAITING_STATUSES),
    }


def estimate_wait_time(position: int, per_patient_minutes: int = WAIT_MINUTES_PER_PATIENT) -> int:
    """Estimated wait in minutes for a queue position"""
    if per_patient_minutes <= 0:
        raise ValueError("per_patient_minutes must be positive")
    return max(0, position * per_patient_minutes)


def queue_position(stn: int, now_serving: int) -> int:
    return max(0, stn - now_serving)


def load_day_visits(db: Session, visit_date: date, department: Optional[str] = None) -> List[Visit]:
    query = db.query(Visit).options(
        joinedload(Visit.patient)
    ).filter(Visit.visit_date == visit_date)

    if department:
        query = query.filter(Visit.department == department)

    return query.order_by(Visit.stn).all()


def read_queue_status(
    db: Session,
    visit_date: date,
    department: Optional[str] = None
) -> Tuple[dict, List[Visit], Optional[str]]:
    """
    Load the day's rows and reduce them.

    Returns (status, rows, error). A failed read degrades to a zeroed
    status with no rows plus a generic error string.
    """
    try:
        rows = load_day_visits(db, visit_date, department)
    except SQLAlchemyError as e:
        logger.error(f"Error fetching queue ({department or 'all'}, {visit_date}): {str(e)}")
        return {"now_serving": 0, "total_waiting": 0}, [], QUEUE_READ_ERROR

    return summarize_queue(rows), rows, None


def format_queue_row(visit: Visit) -> dict:
    return {
        "id": visit.id,
        "stn": visit.stn,
        "department": visit.department,
        "status": visit.status,
        "payment_status": visit.payment_status,
        "patient_name": visit.patient.name if visit.patient else None,
        "doctor_id": visit.doctor_id
    }

# ==================== API ENDPOINTS ====================

@router.get("/status", response_model=dict, dependencies=[Depends(require_site_open)])
async def get_queue_status(
    department: Optional[str] = Query(None),
    stn: Optional[int] = Query(None, ge=1, description="Your token number"),
    db: Session = Depends(get_db),
    today: date = Depends(get_today)
):
    """
    Live queue widget: now serving / waiting count, and for a given token
    its position and estimated wait
    """
    status, _, error = read_queue_status(db, today, department)

    response = {
        "department": department,
        "visit_date": str(today),
        "now_serving": status["now_serving"],
        "total_waiting": status["total_waiting"],
        "refresh_interval": get_setting(db, "auto_refresh_interval"),
        "error": error
    }

    if stn is not None:
        position = queue_position(stn, status["now_serving"])
        response.update({
            "stn": stn,
            "position": position,
            "estimated_wait_minutes": estimate_wait_time(position)
        })

    return response


@router.get("/departments", response_model=dict, dependencies=[Depends(require_site_open)])
async def get_department_stats(
    db: Session = Depends(get_db),
    today: date = Depends(get_today)
):
    """Home page cards: one queue summary per active department"""
    try:
        departments = db.query(Department).filter(
            Department.is_active == True
        ).order_by(Department.name).all()

        doctors = db.query(Doctor).filter(
            Doctor.status == DoctorStatus.ACTIVE.value
        ).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching department stats: {str(e)}")
        return {
            "departments": [],
            "error": "Failed to load department information. Please refresh the page."
        }

    if not departments:
        return {
            "departments": [],
            "error": "No departments found. Please contact admin to set up departments."
        }

    _, visits, error = read_queue_status(db, today)

    stats = []
    for dept in departments:
        dept_visits = [v for v in visits if v.department == dept.name]
        summary = summarize_queue(dept_visits)
        stats.append({
            "department": dept.name,
            "display_name": dept.display_name,
            "color_code": dept.color_code,
            "now_serving": summary["now_serving"],
            "total_waiting": summary["total_waiting"],
            "total_completed": sum(1 for v in dept_visits if v.status == VisitStatus.COMPLETED),
            "average_wait_time": dept.average_consultation_time,
            "doctor_count": sum(1 for d in doctors if d.specialization == dept.name)
        })

    return {
        "visit_date": str(today),
        "departments": stats,
        "error": error
    }


@router.get("/visits", response_model=dict, dependencies=[Depends(require_site_open)])
async def get_queue_board(
    department: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    today: date = Depends(get_today)
):
    """Today's tokens in stn order (waiting-room display board)"""
    status, rows, error = read_queue_status(db, today, department)
    return {
        "visit_date": str(today),
        "now_serving": status["now_serving"],
        "total_waiting": status["total_waiting"],
        "visits": [format_queue_row(v) for v in rows],
        "error": error
    }
