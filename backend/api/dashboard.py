import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from database.connection import get_db
from database.models import Visit, Consultation, StaffUser, StaffRole, VisitStatus
from api.auth import require_roles
from api.queue import get_today
from pydantic import BaseModel
from typing import Dict, Iterable, List, Optional
from datetime import date, timedelta
from decimal import Decimal
from collections import Counter
import logging

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])
logger = logging.getLogger(__name__)

TREND_DAYS = 7
MONTH_DAYS = 30

# ==================== PYDANTIC MODELS ====================

class TodayStats(BaseModel):
    total_visits: int
    completed_visits: int
    revenue: float
    average_wait_time: Optional[int] = None  # minutes, booking -> consultation start

class WeeklyStats(BaseModel):
    dates: List[str]
    visits_trend: List[int]
    revenue_trend: List[float]
    department_distribution: Dict[str, int]

class DepartmentCount(BaseModel):
    department: str
    count: int

class MonthlyStats(BaseModel):
    total_visits: int
    total_revenue: float
    top_departments: List[DepartmentCount]

class AnalyticsResponse(BaseModel):
    generated_for: str
    today: TodayStats
    weekly: WeeklyStats
    monthly: MonthlyStats

# ==================== HELPER FUNCTIONS ====================

def visit_revenue(visit: Visit) -> Decimal:
    """Sum of completed payment transactions on a visit"""
    return sum(
        (Decimal(t.amount) for t in visit.transactions if t.status == "completed"),
        Decimal("0")
    )


def total_revenue(visits: Iterable[Visit]) -> Decimal:
    return sum((visit_revenue(v) for v in visits), Decimal("0"))


def average_wait_minutes(consultations: Iterable[Consultation]) -> Optional[int]:
    waits = [
        (c.started_at - c.visit.created_at).total_seconds() / 60
        for c in consultations
        if c.started_at and c.visit and c.visit.created_at
    ]
    if not waits:
        return None
    return max(0, round(sum(waits) / len(waits)))


def build_trends(visits: List[Visit], today: date, days: int = TREND_DAYS) -> dict:
    """Per-day visit counts and revenue, oldest day first"""
    dates = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    by_day = {d: [] for d in dates}
    for visit in visits:
        if visit.visit_date in by_day:
            by_day[visit.visit_date].append(visit)

    return {
        "dates": [d.isoformat() for d in dates],
        "visits_trend": [len(by_day[d]) for d in dates],
        "revenue_trend": [float(total_revenue(by_day[d])) for d in dates],
        "department_distribution": dict(Counter(
            v.department for day in dates for v in by_day[day]
        ))
    }


def top_departments(visits: Iterable[Visit], limit: int = 5) -> List[dict]:
    counts = Counter(v.department for v in visits)
    return [
        {"department": department, "count": count}
        for department, count in counts.most_common(limit)
    ]

# ==================== API ENDPOINTS ====================

@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    """
    Clinic analytics for the admin dashboard

    - Today: visits, completed, revenue, average wait
    - Last 7 days: visit / revenue trend, department split
    - Last 30 days: totals and busiest departments
    """
    month_start = today - timedelta(days=MONTH_DAYS - 1)
    try:
        # One query for the whole window; transactions eager-loaded
        visits = db.query(Visit).options(
            joinedload(Visit.transactions)
        ).filter(
            Visit.visit_date >= month_start,
            Visit.visit_date <= today
        ).all()

        consultations = db.query(Consultation).options(
            joinedload(Consultation.visit)
        ).join(Visit, Consultation.visit_id == Visit.id).filter(
            Visit.visit_date == today
        ).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching analytics: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load analytics")

    today_visits = [v for v in visits if v.visit_date == today]

    return {
        "generated_for": today.isoformat(),
        "today": {
            "total_visits": len(today_visits),
            "completed_visits": sum(1 for v in today_visits if v.status == VisitStatus.COMPLETED),
            "revenue": float(total_revenue(today_visits)),
            "average_wait_time": average_wait_minutes(consultations)
        },
        "weekly": build_trends(visits, today),
        "monthly": {
            "total_visits": len(visits),
            "total_revenue": float(total_revenue(visits)),
            "top_departments": top_departments(visits)
        }
    }
