"""Health check endpoints"""
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_clock
from app.database import get_db
from app.models.refresh_token import RefreshToken
from app.models.user import User
from app.utils.clock import Clock

router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "ReWear Auth"
VERSION = "0.1.0"

# Track startup time
STARTUP_TIME = time.time()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
def health_check():
    """
    Basic health check endpoint

    Returns 200 if service is running
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": _timestamp()
    }


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check - verifies the database is reachable

    Returns 200 if ready to serve traffic, 503 if not ready
    """
    checks: Dict[str, Any] = {
        "database": False,
        "database_latency_ms": None
    }

    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        checks["database"] = True
        checks["database_latency_ms"] = round(latency_ms, 2)
    except SQLAlchemyError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "checks": checks,
                "message": f"Database check failed: {type(e).__name__}"
            },
        )

    if latency_ms > 1000:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "degraded",
                "checks": checks,
                "message": "Database latency is high"
            },
        )

    return {
        "status": "ready",
        "checks": checks,
        "timestamp": _timestamp()
    }


@router.get("/live")
def liveness_check():
    """
    Liveness check - verifies service is alive

    Used by Kubernetes liveness probe
    """
    return {
        "status": "alive",
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "timestamp": _timestamp()
    }


@router.get("/stats")
def health_stats(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """
    System statistics: user and session counts, database latency
    """
    try:
        now = clock()
        total_users = db.query(User).count()
        active_sessions = db.query(RefreshToken).filter(
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > now,
        ).count()

        db_start = time.time()
        db.execute(text("SELECT 1"))
        db_latency_ms = (time.time() - db_start) * 1000
    except SQLAlchemyError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "message": type(e).__name__, "timestamp": _timestamp()},
        )

    return {
        "status": "healthy",
        "users": {"total": total_users},
        "sessions": {"active": active_sessions},
        "database": {
            "connected": True,
            "latency_ms": round(db_latency_ms, 2)
        },
        "system": {
            "uptime_seconds": round(time.time() - STARTUP_TIME, 2)
        },
        "timestamp": _timestamp()
    }
