"""Pydantic schemas for API request/response — decoupled from SQLAlchemy models."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class SyncReport(BaseModel):
    skipped: bool = False
    started_at: Optional[datetime] = None
    duration_ms: int = 0
    steps: dict[str, Any] = Field(default_factory=dict)


class SyncStatus(BaseModel):
    running: bool
    schedule: str
    last_report: Optional[dict[str, Any]] = None
    next_run_time: Optional[str] = None  # ISO 8601; None when scheduling is off


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class AlertOut(BaseModel):
    id: str
    type: str
    severity: str
    title: str
    message: str
    resource_id: Optional[str]
    budget_id: Optional[str]
    is_read: bool
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    details: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertStats(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    active: int = 0
    unread: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------


class AnomalyOut(BaseModel):
    id: str
    resource_id: str
    subscription_id: Optional[str]
    date: date
    expected_cost: float
    actual_cost: float
    deviation_percentage: float
    z_score: float
    severity: str
    is_resolved: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Forecast
# ---------------------------------------------------------------------------


class ForecastPointOut(BaseModel):
    date: date
    predicted_cost: float
    lower_bound: float
    upper_bound: float
    confidence: int  # percent


class ForecastSummaryOut(BaseModel):
    total_forecasted_cost: float
    avg_daily_forecast: float
    trend: str  # increasing | decreasing | stable
    trend_rate: float


class ForecastOut(BaseModel):
    insufficient_data: bool = False
    history_points: int = 0
    forecast: list[ForecastPointOut] = Field(default_factory=list)
    summary: Optional[ForecastSummaryOut] = None


# ---------------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------------


class BudgetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    amount: float = Field(..., gt=0, description="Spend ceiling for the period")
    period: str = Field("monthly", description="monthly | quarterly | yearly")
    subscription_id: Optional[str] = Field(None, description="Local subscription ID, null for unscoped")
    resource_group_id: Optional[str] = Field(
        None, description="Local resource group ID; narrows a subscription budget to one group",
    )
    alert_thresholds: list[float] = Field(default_factory=lambda: [50, 75, 90, 100])
    is_active: bool = True

    @field_validator("period")
    @classmethod
    def _check_period(cls, v: str) -> str:
        if v not in ("monthly", "quarterly", "yearly"):
            raise ValueError("period must be monthly, quarterly or yearly")
        return v

    @field_validator("alert_thresholds")
    @classmethod
    def _check_thresholds(cls, v: list[float]) -> list[float]:
        if any(t <= 0 for t in v):
            raise ValueError("thresholds are positive percentages")
        return sorted(set(v))


class BudgetOut(BaseModel):
    id: str
    name: str
    amount: float
    period: str
    subscription_id: Optional[str]
    resource_group_id: Optional[str] = None
    current_spend: float
    alert_thresholds: list[float]
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BudgetStatus(BaseModel):
    """Utilisation of a single budget against its cached spend."""
    budget_id: str
    name: str
    period: str
    subscription_id: Optional[str]
    current_spend: float
    amount: float
    utilization: float  # percent
    highest_threshold_crossed: Optional[float] = None
    status: str  # ok | warning | exceeded
