# API Package - Centralized imports
# Allows easy importing of all routers and shared helpers

from .auth import router as auth_router, get_current_user, require_roles, create_access_token, create_refresh_token
from .audit import router as audit_router, log_action
from .settings import router as settings_router, get_setting, require_site_open
from .queue import (
    router as queue_router,
    get_today,
    compute_now_serving,
    estimate_wait_time,
    read_queue_status
)
from .payments import (
    router as payments_router,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET
)
from .booking import router as booking_router, encode_qr_payload, decode_qr_payload
from .admin import router as admin_router, apply_visit_transition, IllegalTransition
from .doctor_session import router as doctor_session_router
from .patients import router as patients_router
from .dashboard import router as dashboard_router
from .realtime import router as realtime_router, change_feed

__all__ = [
    # Auth
    "auth_router",
    "get_current_user",
    "require_roles",
    "create_access_token",
    "create_refresh_token",

    # Routers
    "audit_router",
    "settings_router",
    "queue_router",
    "payments_router",
    "booking_router",
    "admin_router",
    "doctor_session_router",
    "patients_router",
    "dashboard_router",
    "realtime_router",

    # Shared helpers
    "log_action",
    "get_setting",
    "require_site_open",
    "get_today",
    "compute_now_serving",
    "estimate_wait_time",
    "read_queue_status",
    "encode_qr_payload",
    "decode_qr_payload",
    "apply_visit_transition",
    "IllegalTransition",
    "change_feed",

    # Razorpay Keys
    "RAZORPAY_KEY_ID",
    "RAZORPAY_KEY_SECRET",
]
