from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from api.auth import router as auth_router
from api.queue import router as queue_router
from api.booking import router as booking_router
from api.payments import router as payments_router
from api.admin import router as admin_router
from api.doctor_session import router as doctor_session_router
from api.settings import router as settings_router
from api.patients import router as patients_router
from api.dashboard import router as dashboard_router
from api.audit import router as audit_router
from api.realtime import router as realtime_router
from database.connection import engine, Base
from dotenv import load_dotenv
import logging
import os
import uvicorn

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create database tables
Base.metadata.create_all(bind=engine)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

# Screens of the client app and the API areas each one talks to
SURFACES = {
    "admin": ["/api/admin", "/api/patients", "/api/settings", "/api/dashboard", "/api/audit"],
    "doctor": ["/api/doctor", "/api/patients"],
    "home": ["/api/queue", "/api/booking", "/api/payments", "/api/settings/public"],
}

app = FastAPI(
    title="Clinic Queue API",
    description="Walk-in token booking, live queue, reception console and doctor room",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(queue_router)
app.include_router(booking_router)
app.include_router(payments_router)
app.include_router(admin_router)
app.include_router(doctor_session_router)
app.include_router(settings_router)
app.include_router(patients_router)
app.include_router(dashboard_router)
app.include_router(audit_router)
app.include_router(realtime_router)


def resolve_surface(pathname: str) -> str:
    """Exact-match dispatch: /admin and /doctor (with or without slash), else home"""
    if pathname in ("/admin", "/admin/"):
        return "admin"
    if pathname in ("/doctor", "/doctor/"):
        return "doctor"
    return "home"


@app.get("/")
async def root():
    return {
        "message": "Clinic Queue API",
        "status": "running",
        "version": "1.0.0",
        "endpoints": {
            "auth": "/api/auth",
            "queue": "/api/queue",
            "booking": "/api/booking",
            "payments": "/api/payments",
            "admin": "/api/admin",
            "doctor": "/api/doctor",
            "settings": "/api/settings",
            "patients": "/api/patients",
            "dashboard": "/api/dashboard",
            "audit": "/api/audit",
            "realtime": "/api/realtime/ws",
            "docs": "/docs"
        }
    }


@app.get("/surface")
async def get_surface(path: str = Query("/", description="Client pathname")):
    surface = resolve_surface(path)
    return {"path": path, "surface": surface, "api": SURFACES[surface]}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
