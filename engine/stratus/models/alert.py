"""Alert model — persisted notification records (the alert inbox)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base

ALERT_TYPES = ("budget", "anomaly", "recommendation", "system")
SEVERITIES = ("low", "medium", "high", "critical")


class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # budget, anomaly, recommendation, system
    severity: Mapped[str] = mapped_column(String(16), nullable=False)  # low, medium, high, critical
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, default="")
    resource_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("resources.id"), nullable=True
    )
    budget_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("budgets.id"), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
