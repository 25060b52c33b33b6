"""Cost forecast API."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..services.forecaster import InsufficientData, forecast_from_store
from .schemas import ForecastOut

router = APIRouter(prefix="/forecast", tags=["forecast"])


@router.get("", response_model=ForecastOut)
def get_forecast(
    days: int = Query(settings.forecast_horizon_days, ge=1, le=365),
    history_days: int = Query(settings.forecast_history_days, ge=7, le=730),
    db: Session = Depends(get_db),
):
    result = forecast_from_store(db, history_days=history_days, horizon_days=days)
    if isinstance(result, InsufficientData):
        return ForecastOut(insufficient_data=True, history_points=result.history_points)
    return ForecastOut(
        history_points=result.history_points,
        forecast=[asdict(p) for p in result.predictions],
        summary=asdict(result.summary),
    )
