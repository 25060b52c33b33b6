"""Alert inbox API — list, read, resolve, and severity stats."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..services import alerts as alert_service
from .schemas import AlertOut, AlertStats

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=list[AlertOut])
def list_alerts(
    type: Optional[str] = None,
    severity: Optional[str] = None,
    is_read: Optional[bool] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return alert_service.list_alerts(
        db, alert_type=type, severity=severity, is_read=is_read, limit=limit, offset=offset,
    )


@router.get("/stats", response_model=AlertStats)
def alert_stats(db: Session = Depends(get_db)):
    return alert_service.alert_stats(db)


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db)):
    return {"updated": alert_service.mark_all_read(db)}


@router.post("/{alert_id}/read", response_model=AlertOut)
def mark_read(alert_id: str, db: Session = Depends(get_db)):
    alert = alert_service.mark_read(db, alert_id)
    if not alert:
        raise HTTPException(404, "Alert not found")
    return alert


@router.post("/{alert_id}/resolve", response_model=AlertOut)
def resolve(alert_id: str, db: Session = Depends(get_db)):
    alert = alert_service.resolve_alert(db, alert_id)
    if not alert:
        raise HTTPException(404, "Alert not found")
    return alert
