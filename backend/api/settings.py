import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from database.connection import get_db
from database.models import ClinicSetting, Department, Doctor, DoctorStatus, StaffUser, StaffRole
from api.auth import require_roles
from api.audit import log_action
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from decimal import Decimal
import logging

router = APIRouter(prefix="/api/settings", tags=["Clinic Settings"])
logger = logging.getLogger(__name__)

# ==================== CONFIG ====================

# Used whenever a key has never been saved
SETTING_DEFAULTS: Dict[str, Any] = {
    "maintenance_mode": False,
    "maintenance_message": "System is under maintenance. Please try again later.",
    "auto_refresh_interval": 15,  # seconds
    "enable_online_payments": False,
    "max_tokens_per_department": 50,
    "clinic_name": "MediQueue Clinic",
}

PUBLIC_SETTING_KEYS = [
    "maintenance_mode",
    "maintenance_message",
    "auto_refresh_interval",
    "enable_online_payments",
    "clinic_name",
]

# ==================== PYDANTIC MODELS ====================

class SettingUpdateRequest(BaseModel):
    value: Any
    description: Optional[str] = None

class DepartmentCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="Machine key, e.g. 'general'")
    display_name: str = Field(..., min_length=1, max_length=100)
    consultation_fee: Decimal = Field(Decimal("0"), ge=0)
    average_consultation_time: int = Field(10, ge=1, le=240)
    color_code: str = "#3B82F6"
    is_active: bool = True

class DepartmentUpdateRequest(BaseModel):
    display_name: Optional[str] = None
    consultation_fee: Optional[Decimal] = Field(None, ge=0)
    average_consultation_time: Optional[int] = Field(None, ge=1, le=240)
    color_code: Optional[str] = None
    is_active: Optional[bool] = None

class DoctorCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    specialization: str = Field(..., min_length=1, description="Department name")
    email: Optional[str] = None
    phone: Optional[str] = None
    status: DoctorStatus = DoctorStatus.ACTIVE
    available_days: List[str] = []
    available_hours: Dict[str, str] = {"start": "09:00", "end": "17:00"}
    max_patients_per_day: int = Field(50, ge=1, le=500)

class DoctorUpdateRequest(BaseModel):
    name: Optional[str] = None
    specialization: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[DoctorStatus] = None
    available_days: Optional[List[str]] = None
    available_hours: Optional[Dict[str, str]] = None
    max_patients_per_day: Optional[int] = Field(None, ge=1, le=500)

# ==================== HELPER FUNCTIONS ====================

def normalize_setting_value(key: str, value: Any) -> Any:
    """
    Coerce a value to the type of the key's default.
    Raises ValueError when it cannot be; keys without a default pass through.
    """
    default = SETTING_DEFAULTS.get(key)
    if default is None or value is None:
        return value
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError(f"{key} must be true or false")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ValueError(f"{key} must be a whole number")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{key} must be a whole number")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be a whole number")
        if number < 0:
            raise ValueError(f"{key} cannot be negative")
        return number
    if isinstance(default, str):
        if isinstance(value, str):
            return value
        raise ValueError(f"{key} must be text")
    return value


def get_setting(db: Session, key: str) -> Any:
    """
    Read one clinic setting, falling back to its default when it is
    missing or no longer fits the default's type.
    """
    default = SETTING_DEFAULTS.get(key)
    try:
        row = db.query(ClinicSetting).filter(ClinicSetting.setting_key == key).first()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load setting {key}: {str(e)}")
        return default

    if row is None or row.setting_value is None:
        return default
    try:
        return normalize_setting_value(key, row.setting_value)
    except ValueError:
        logger.warning(f"Ignoring invalid stored value for setting {key}: {row.setting_value!r}")
        return default


def get_public_settings(db: Session) -> dict:
    return {key: get_setting(db, key) for key in PUBLIC_SETTING_KEYS}


async def require_site_open(db: Session = Depends(get_db)):
    """Close patient-facing routes while maintenance mode is on"""
    if get_setting(db, "maintenance_mode"):
        raise HTTPException(
            status_code=503,
            detail=get_setting(db, "maintenance_message") or SETTING_DEFAULTS["maintenance_message"]
        )


def format_department(dept: Department) -> dict:
    return {
        "id": dept.id,
        "name": dept.name,
        "display_name": dept.display_name,
        "consultation_fee": float(dept.consultation_fee or 0),
        "average_consultation_time": dept.average_consultation_time,
        "color_code": dept.color_code,
        "is_active": dept.is_active
    }


def format_doctor(doctor: Doctor) -> dict:
    return {
        "id": doctor.id,
        "name": doctor.name,
        "specialization": doctor.specialization,
        "email": doctor.email,
        "phone": doctor.phone,
        "status": doctor.status,
        "available_days": doctor.available_days or [],
        "available_hours": doctor.available_hours or {},
        "max_patients_per_day": doctor.max_patients_per_day
    }

# ==================== SETTINGS ====================

@router.get("/public", response_model=dict)
async def public_settings(db: Session = Depends(get_db)):
    """Settings every screen reads at start-up"""
    return get_public_settings(db)


@router.get("", response_model=dict)
async def list_settings(
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    settings = dict(SETTING_DEFAULTS)
    for row in db.query(ClinicSetting).order_by(ClinicSetting.setting_key).all():
        settings[row.setting_key] = row.setting_value
    return {"settings": settings}


@router.put("/{key}", response_model=dict)
async def update_setting(
    key: str,
    request: SettingUpdateRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    try:
        value = normalize_setting_value(key, request.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    row = db.query(ClinicSetting).filter(ClinicSetting.setting_key == key).first()
    old_value = row.setting_value if row else None

    try:
        if row:
            row.setting_value = value
            if request.description is not None:
                row.description = request.description
        else:
            row = ClinicSetting(
                setting_key=key,
                setting_value=value,
                description=request.description
            )
            db.add(row)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save setting {key}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to save settings")

    log_action(
        db=db,
        actor_id=current_user.id,
        action_type="UPDATE_SETTING",
        resource_type="clinic_setting",
        resource_id=key,
        payload={"old_value": old_value, "new_value": value}
    )

    return {"status": "success", "key": key, "value": row.setting_value}

# ==================== DEPARTMENTS ====================

@router.get("/departments", response_model=dict)
async def list_departments(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db)
):
    query = db.query(Department)
    if not include_inactive:
        query = query.filter(Department.is_active == True)
    departments = query.order_by(Department.name).all()
    return {
        "total": len(departments),
        "departments": [format_department(d) for d in departments]
    }


@router.post("/departments", response_model=dict)
async def create_department(
    request: DepartmentCreateRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    name = request.name.strip().lower()
    if db.query(Department).filter(Department.name == name).first():
        raise HTTPException(status_code=400, detail="Department already exists")

    dept = Department(
        name=name,
        display_name=request.display_name,
        consultation_fee=request.consultation_fee,
        average_consultation_time=request.average_consultation_time,
        color_code=request.color_code,
        is_active=request.is_active
    )
    db.add(dept)
    db.commit()
    db.refresh(dept)

    log_action(db, current_user.id, "CREATE_DEPARTMENT", "department", str(dept.id), {"name": name})
    return format_department(dept)


@router.put("/departments/{department_id}", response_model=dict)
async def update_department(
    department_id: int,
    request: DepartmentUpdateRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    dept = db.query(Department).filter(Department.id == department_id).first()
    if not dept:
        raise HTTPException(status_code=404, detail="Department not found")

    changes = request.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(dept, field, value)
    db.commit()
    db.refresh(dept)

    log_action(db, current_user.id, "UPDATE_DEPARTMENT", "department", str(dept.id),
               {k: str(v) for k, v in changes.items()})
    return format_department(dept)

# ==================== DOCTORS ====================

@router.get("/doctors", response_model=dict)
async def list_doctors(
    department: Optional[str] = Query(None, description="Filter by specialization"),
    db: Session = Depends(get_db)
):
    """Active doctors, e.g. for the booking form's doctor picker"""
    query = db.query(Doctor).filter(Doctor.status == DoctorStatus.ACTIVE.value)
    if department:
        query = query.filter(Doctor.specialization == department)
    doctors = query.order_by(Doctor.name).all()
    return {
        "total": len(doctors),
        "doctors": [format_doctor(d) for d in doctors]
    }


@router.post("/doctors", response_model=dict)
async def create_doctor(
    request: DoctorCreateRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    doctor = Doctor(
        name=request.name,
        specialization=request.specialization,
        email=request.email,
        phone=request.phone,
        status=request.status.value,
        available_days=request.available_days,
        available_hours=request.available_hours,
        max_patients_per_day=request.max_patients_per_day
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)

    log_action(db, current_user.id, "CREATE_DOCTOR", "doctor", str(doctor.id),
               {"name": doctor.name, "specialization": doctor.specialization})
    return format_doctor(doctor)


@router.put("/doctors/{doctor_id}", response_model=dict)
async def update_doctor(
    doctor_id: int,
    request: DoctorUpdateRequest,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")

    changes = request.model_dump(exclude_unset=True)
    if changes.get("status") is not None:
        changes["status"] = changes["status"].value
    for field, value in changes.items():
        setattr(doctor, field, value)
    db.commit()
    db.refresh(doctor)

    log_action(db, current_user.id, "UPDATE_DOCTOR", "doctor", str(doctor.id),
               {k: str(v) for k, v in changes.items()})
    return format_doctor(doctor)
