"""Anomaly detector — z-score of recent daily cost against each resource's baseline.

For every (resource, subscription) pair the daily cost totals in the lookback
window form the baseline. Each of the last three calendar days is scored
against it; days at or above the z threshold become ``CostAnomaly`` rows.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from datetime import date, timedelta
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.cost import CostRecord
from .alerts import send_alert
from .budget_monitor import today_utc
from .notifications import NotificationChannel
from .store import insert_anomaly

logger = logging.getLogger(__name__)

MIN_SAMPLES = 7
RECENT_DAYS = 3


def baseline(costs: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation."""
    return statistics.fmean(costs), statistics.pstdev(costs)


def z_score(value: float, mean: float, stddev: float) -> float:
    return (value - mean) / stddev


def classify_severity(z: float) -> str:
    if z >= 4:
        return "critical"
    if z >= 3:
        return "high"
    return "medium"


def _daily_costs_by_resource(
    db: Session, since: date, until: date,
) -> dict[tuple[str, str | None], dict[date, float]]:
    q = (
        select(
            CostRecord.resource_id,
            CostRecord.subscription_id,
            CostRecord.date,
            func.sum(CostRecord.cost),
        )
        .where(
            CostRecord.resource_id.is_not(None),
            CostRecord.date >= since,
            CostRecord.date <= until,
        )
        .group_by(CostRecord.resource_id, CostRecord.subscription_id, CostRecord.date)
    )
    series: dict[tuple[str, str | None], dict[date, float]] = defaultdict(dict)
    for resource_pk, subscription_pk, day, total in db.execute(q).all():
        series[(resource_pk, subscription_pk)][day] = float(total or 0.0)
    return series


def detect_anomalies(
    db: Session,
    lookback_days: int = 30,
    z_threshold: float = 2.0,
    today: date | None = None,
    channel: NotificationChannel | None = None,
) -> int:
    """Score the last three days of every resource. Returns new anomalies recorded.

    Already-recorded (resource, date) pairs are skipped, so repeated runs over
    the same window add nothing.
    """
    today = today or today_utc()
    recent_start = today - timedelta(days=RECENT_DAYS - 1)
    series = _daily_costs_by_resource(db, today - timedelta(days=lookback_days), today)

    created = 0
    for (resource_pk, subscription_pk), by_day in series.items():
        if len(by_day) < MIN_SAMPLES:
            continue
        mean, stddev = baseline(list(by_day.values()))
        if stddev == 0:
            continue

        for day in sorted(d for d in by_day if d >= recent_start):
            actual = by_day[day]
            z = z_score(actual, mean, stddev)
            if z < z_threshold:
                continue

            deviation = (actual - mean) / mean * 100 if mean else 0.0
            severity = classify_severity(z)
            inserted = insert_anomaly(db, {
                "resource_id": resource_pk,
                "subscription_id": subscription_pk,
                "date": day,
                "expected_cost": round(mean, 2),
                "actual_cost": round(actual, 2),
                "deviation_percentage": round(deviation, 2),
                "z_score": round(z, 2),
                "severity": severity,
            })
            if not inserted:
                continue

            created += 1
            logger.info(
                "Anomaly: resource %s on %s — $%.2f vs expected $%.2f (z=%.2f, %s)",
                resource_pk, day, actual, mean, z, severity,
            )
            if severity in ("high", "critical"):
                send_alert(
                    db,
                    "anomaly",
                    severity,
                    f"Cost anomaly detected ({deviation:.0f}% spike)",
                    f"Resource cost jumped from expected ${mean:.2f} to ${actual:.2f} (z-score: {z:.2f})",
                    resource_id=resource_pk,
                    channel=channel,
                    details={"date": day.isoformat(), "z_score": round(z, 2)},
                )

    db.commit()
    logger.info("Anomaly detection: %d new anomalies", created)
    return created
