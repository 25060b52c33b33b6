"""FastAPI health endpoint with detailed diagnostics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..services.resilience import error_tracker

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """Health check endpoint for load balancers and monitoring."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        db_ok = False

    return {
        "status": "ok" if db_ok else "degraded",
        "service": "stratus",
        "checks": {"database": "ok" if db_ok else "unreachable"},
        "recent_errors": error_tracker.count,
    }
