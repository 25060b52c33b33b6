"""Recommendation model — optimization advisories pulled from the upstream advisor."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class Recommendation(Base):
    __tablename__ = "recommendations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_id: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    resource_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("resources.id"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(64), default="")  # raw upstream category
    category: Mapped[str] = mapped_column(String(32), default="cost")  # cost, security, reliability, performance
    impact: Mapped[str] = mapped_column(String(16), default="medium")  # low, medium, high
    title: Mapped[str] = mapped_column(String(512), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    estimated_savings: Mapped[float] = mapped_column(Float, default=0.0)  # monthly
    action: Mapped[str] = mapped_column(String(32), default="review")
    status: Mapped[str] = mapped_column(String(16), default="active")  # active, dismissed, implemented
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
