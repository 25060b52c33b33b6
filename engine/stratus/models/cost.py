"""Cost facts — daily cost records, utilization points and detected anomalies."""

from __future__ import annotations

import uuid
import datetime as dt
from datetime import datetime, timezone

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class CostRecord(Base):
    """One day's spend for a resource/service pair. Append-only."""

    __tablename__ = "cost_records"
    __table_args__ = (
        UniqueConstraint("resource_ref", "date", "service_name", name="uq_cost_records_resource_date_service"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    resource_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("resources.id"), nullable=True
    )  # null when the upstream resource is not in the inventory
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=True
    )
    resource_ref: Mapped[str] = mapped_column(String(512), default="")  # upstream resource ID, "" if unattributed
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    cost: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    service_name: Mapped[str] = mapped_column(String(128), default="")
    meter_category: Mapped[str] = mapped_column(String(128), default="")
    region: Mapped[str] = mapped_column(String(64), default="")
    tags: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class UsageMetric(Base):
    __tablename__ = "usage_metrics"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    resource_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("resources.id"), nullable=False
    )
    metric_name: Mapped[str] = mapped_column(String(64), nullable=False)  # cpu_utilization
    metric_value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CostAnomaly(Base):
    __tablename__ = "cost_anomalies"
    __table_args__ = (
        UniqueConstraint("resource_id", "date", name="uq_cost_anomalies_resource_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    resource_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("resources.id"), nullable=False
    )
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    expected_cost: Mapped[float] = mapped_column(Float, default=0.0)
    actual_cost: Mapped[float] = mapped_column(Float, default=0.0)
    deviation_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    z_score: Mapped[float] = mapped_column(Float, default=0.0)
    severity: Mapped[str] = mapped_column(String(16), default="medium")  # medium, high, critical
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
