"""Cost anomaly API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.cost import CostAnomaly
from .schemas import AnomalyOut

router = APIRouter(prefix="/anomalies", tags=["anomalies"])


@router.get("", response_model=list[AnomalyOut])
def list_anomalies(
    unresolved_only: bool = True,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    q = select(CostAnomaly)
    if unresolved_only:
        q = q.where(CostAnomaly.is_resolved.is_(False))
    q = q.order_by(CostAnomaly.date.desc(), CostAnomaly.z_score.desc()).limit(limit)
    return db.execute(q).scalars().all()


@router.post("/{anomaly_id}/resolve", response_model=AnomalyOut)
def resolve_anomaly(anomaly_id: str, db: Session = Depends(get_db)):
    anomaly = db.get(CostAnomaly, anomaly_id)
    if not anomaly:
        raise HTTPException(404, "Anomaly not found")
    anomaly.is_resolved = True
    db.commit()
    db.refresh(anomaly)
    return anomaly
