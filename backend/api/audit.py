import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload
from database.connection import get_db
from database.models import AuditLog, StaffUser, StaffRole
from api.auth import require_roles
from typing import Optional
import logging

router = APIRouter(prefix="/api/audit", tags=["Audit Log"])
logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    actor_id: Optional[int],
    action_type: str,
    resource_type: str,
    resource_id: str,
    payload: Optional[dict] = None
) -> None:
    """
    Write an audit entry after the main change is committed.
    A failure here is logged and never undoes the main change.
    """
    try:
        db.add(AuditLog(
            actor_id=actor_id,
            action_type=action_type,
            resource_type=resource_type,
            resource_id=resource_id,
            action_payload=payload
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Error logging audit action {action_type}: {str(e)}")


@router.get("/logs", response_model=dict)
async def list_audit_logs(
    action_type: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(require_roles(StaffRole.ADMIN))
):
    """Most recent audit entries first"""
    query = db.query(AuditLog).options(joinedload(AuditLog.actor))
    if action_type:
        query = query.filter(AuditLog.action_type == action_type)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)

    entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return {
        "total": len(entries),
        "logs": [
            {
                "id": e.id,
                "actor": e.actor.email if e.actor else None,
                "action_type": e.action_type,
                "resource_type": e.resource_type,
                "resource_id": e.resource_id,
                "payload": e.action_payload,
                "created_at": e.created_at.isoformat() if e.created_at else None
            }
            for e in entries
        ]
    }
