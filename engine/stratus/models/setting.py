"""Engine state that must survive restarts, stored as text under dotted keys.

Keys in use: ``sync.schedule`` (cron expression of the scheduled run) and
``sync.last_report`` (JSON of the last successful sync report). Structured
values are JSON-encoded by ``store.set_setting``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)  # e.g. sync.last_report
    value: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
