"""Forecaster — least-squares linear projection of daily cost."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Sequence

from sqlalchemy.orm import Session

from .budget_monitor import today_utc
from .store import daily_costs

MIN_HISTORY = 7


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    predicted_cost: float
    lower_bound: float
    upper_bound: float
    confidence: int  # percent


@dataclass(frozen=True)
class ForecastSummary:
    total_forecasted_cost: float
    avg_daily_forecast: float
    trend: str
    trend_rate: float


@dataclass
class ForecastResult:
    predictions: list[ForecastPoint]
    summary: ForecastSummary
    slope: float
    intercept: float
    history_points: int = 0


@dataclass
class InsufficientData:
    history_points: int
    required: int = MIN_HISTORY
    message: str = field(default="")

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                f"Need at least {self.required} days of cost history, have {self.history_points}"
            )


def fit_line(ys: Sequence[float]) -> tuple[float, float]:
    """(slope, intercept) of y against x = 0..n-1."""
    n = len(ys)
    x_mean = (n - 1) / 2
    y_mean = sum(ys) / n
    num = sum((x - x_mean) * (y - y_mean) for x, y in enumerate(ys))
    den = sum((x - x_mean) ** 2 for x in range(n))
    slope = num / den if den else 0.0
    return slope, y_mean - slope * x_mean


def classify_trend(slope: float) -> str:
    if slope > 0:
        return "increasing"
    if slope < 0:
        return "decreasing"
    return "stable"


def forecast(
    history: Sequence[tuple[date, float]],
    horizon_days: int = 30,
    start: date | None = None,
) -> ForecastResult | InsufficientData:
    """Project *horizon_days* of cost from ordered (date, cost) history.

    Predictions are dated from *start* (default: the day after today).
    Confidence decays by one point per day from 100%, floored at 50%, and the
    band around each prediction widens to ``±2·(1 − confidence)``.
    """
    if len(history) < MIN_HISTORY:
        return InsufficientData(history_points=len(history))

    costs = [float(c) for _, c in history]
    n = len(costs)
    slope, intercept = fit_line(costs)
    start = start or today_utc() + timedelta(days=1)

    points: list[ForecastPoint] = []
    for i in range(horizon_days):
        predicted = max(0.0, intercept + slope * (n + i))
        confidence = max(0.5, 1 - i * 0.01)
        spread = 2 * (1 - confidence)
        points.append(ForecastPoint(
            date=start + timedelta(days=i),
            predicted_cost=round(predicted, 2),
            lower_bound=round(max(0.0, predicted * (1 - spread)), 2),
            upper_bound=round(predicted * (1 + spread), 2),
            confidence=round(confidence * 100),
        ))

    total = sum(p.predicted_cost for p in points)
    summary = ForecastSummary(
        total_forecasted_cost=round(total, 2),
        avg_daily_forecast=round(total / horizon_days, 2) if horizon_days else 0.0,
        trend=classify_trend(slope),
        trend_rate=round(slope, 2),
    )
    return ForecastResult(
        predictions=points, summary=summary, slope=slope, intercept=intercept, history_points=n,
    )


def forecast_from_store(
    db: Session,
    history_days: int = 90,
    horizon_days: int = 30,
    today: date | None = None,
) -> ForecastResult | InsufficientData:
    """Forecast from the store's aggregate daily cost over the last *history_days*."""
    today = today or today_utc()
    history = daily_costs(db, today - timedelta(days=history_days), today)
    return forecast(history, horizon_days, start=today + timedelta(days=1))
