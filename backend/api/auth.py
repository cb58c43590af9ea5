import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from database.connection import get_db
from database.models import StaffUser, AuditLog, StaffRole
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime, timedelta, timezone
import os
import logging
from dotenv import load_dotenv
import jwt
import bcrypt

load_dotenv()
router = APIRouter(prefix="/api/auth", tags=["Authentication"])
security = HTTPBearer()
logger = logging.getLogger(__name__)

# ==================== CONFIG ====================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))  # one clinic shift
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

# ==================== PYDANTIC MODELS ====================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: dict

# ==================== HELPER FUNCTIONS ====================

def hash_password(password: str) -> str:
    """Hash a staff password with bcrypt"""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plain password against its bcrypt hash"""
    try:
        return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())
    except ValueError:
        return False

def _sign(claims: dict, token_type: str, lifetime: timedelta) -> str:
    issued = datetime.now(timezone.utc)
    body = dict(claims, type=token_type, iat=issued, exp=issued + lifetime)
    return jwt.encode(body, SECRET_KEY, algorithm=ALGORITHM)

def create_access_token(data: dict) -> str:
    """Short-lived token sent as the Bearer header on every staff request"""
    return _sign(data, "access", timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

def create_refresh_token(data: dict) -> str:
    """Long-lived token only accepted by /refresh"""
    return _sign(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

def unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise unauthorized("Session expired, please sign in again")
    except jwt.InvalidTokenError:
        raise unauthorized("Could not validate credentials")

def serialize_user(user: StaffUser) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "doctor_id": user.doctor_id,
    }

def token_claims(user: StaffUser) -> dict:
    # JWT "sub" must be a string
    return {"sub": str(user.id), "role": user.role}

# ==================== DEPENDENCY: Get Current User ====================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> StaffUser:
    """Resolve the signed-in staff member from the Bearer access token"""
    claims = decode_token(credentials.credentials)
    if claims.get("type") != "access" or not claims.get("sub"):
        raise unauthorized("Could not validate credentials")

    user = db.get(StaffUser, int(claims["sub"]))
    if user is None or not user.is_active:
        raise unauthorized("Account not found or disabled")
    return user


def require_roles(*roles: StaffRole):
    """Build a dependency that only lets the given staff roles through"""
    allowed = {role.value for role in roles}

    async def checker(current_user: StaffUser = Depends(get_current_user)) -> StaffUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have access to this section"
            )
        return current_user

    return checker

# ==================== API ENDPOINTS ====================

@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db)
):
    """
    Staff login (admin desk, reception, doctor room)

    - Checks email + password
    - Returns JWT access + refresh tokens
    """
    user = db.query(StaffUser).filter(StaffUser.email == request.email).first()

    if not user or not user.is_active or not verify_password(request.password, user.password_hash):
        logger.warning(f"Failed login attempt for {request.email}")
        raise unauthorized("Incorrect email or password")

    user.last_login = datetime.now()
    db.add(AuditLog(
        actor_id=user.id,
        action_type="LOGIN_SUCCESS",
        resource_type="auth",
        resource_id=str(user.id),
        action_payload={"email": user.email}
    ))
    db.commit()
    db.refresh(user)

    return {
        "access_token": create_access_token(token_claims(user)),
        "refresh_token": create_refresh_token({"sub": str(user.id)}),
        "token_type": "bearer",
        "user": serialize_user(user)
    }


@router.post("/refresh", response_model=dict)
async def refresh_access_token(
    request: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    """Trade a refresh token for a fresh access token"""
    claims = decode_token(request.refresh_token)
    if claims.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="A refresh token is required here")

    user = db.get(StaffUser, int(claims.get("sub", 0)))
    if user is None or not user.is_active:
        raise HTTPException(status_code=404, detail="Account not found or disabled")

    return {"access_token": create_access_token(token_claims(user)), "token_type": "bearer"}


@router.get("/me", response_model=dict)
async def get_current_user_info(
    current_user: StaffUser = Depends(get_current_user)
):
    return serialize_user(current_user)
