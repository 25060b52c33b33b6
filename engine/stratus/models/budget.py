"""Budget model — spend ceilings with percentage alert thresholds."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base

DEFAULT_THRESHOLDS = [50, 75, 90, 100]


class Budget(Base):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    period: Mapped[str] = mapped_column(String(16), default="monthly")  # monthly, quarterly, yearly
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=True
    )  # null = not scoped to one subscription
    resource_group_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("resource_groups.id"), nullable=True
    )
    current_spend: Mapped[float] = mapped_column(Float, default=0.0)  # recomputed after each cost sync
    alert_thresholds: Mapped[list] = mapped_column(JSON, default=lambda: list(DEFAULT_THRESHOLDS))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
