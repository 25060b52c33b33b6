"""Alert dispatcher — persists alerts, fans out high-severity ones, evaluates budget thresholds.

Recording and notifying are two separate steps: the alert row is committed
first, then channels are tried. A channel failure is logged and reported in
the delivery summary but never rolls back or fails the recorded alert.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.alert import Alert
from ..models.budget import Budget
from ..models.subscription import Subscription
from .budget_monitor import utilization_pct
from .notifications import NotificationChannel, WebhookEmailChannel
from .redact import mask_secrets
from .store import active_admin_emails

logger = logging.getLogger(__name__)

NOTIFY_SEVERITIES = ("high", "critical")


def threshold_severity(threshold: float) -> str:
    if threshold >= 100:
        return "critical"
    if threshold >= 90:
        return "high"
    if threshold >= 75:
        return "medium"
    return "low"


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


# ---------------------------------------------------------------------------
# Record + notify
# ---------------------------------------------------------------------------


def record_alert(
    db: Session,
    alert_type: str,
    severity: str,
    title: str,
    message: str,
    resource_id: str | None = None,
    budget_id: str | None = None,
    details: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> Alert:
    """Persist an alert and commit. Secrets are masked out of the text."""
    alert = Alert(
        type=alert_type,
        severity=severity,
        title=mask_secrets(title),
        message=mask_secrets(message),
        resource_id=resource_id,
        budget_id=budget_id,
        details=details or {},
    )
    if created_at is not None:
        alert.created_at = created_at
    db.add(alert)
    db.commit()
    db.refresh(alert)
    return alert


def notify(db: Session, alert: Alert, channel: NotificationChannel | None = None) -> dict[str, Any]:
    """Best-effort fan-out: one webhook post, one email per active admin."""
    if alert.severity not in NOTIFY_SEVERITIES:
        return {"notified": False}

    channel = channel or WebhookEmailChannel()
    tag = alert.severity.upper()
    result: dict[str, Any] = {"notified": True, "webhook": False, "emails": {}}

    try:
        result["webhook"] = channel.send_webhook(f"*[{tag}]* {alert.title}\n{alert.message}")
    except Exception as e:  # channel contract says no raise; a misbehaving one must not unwind the alert
        logger.error("Webhook channel raised: %s", mask_secrets(str(e)))

    body = f"<h3>{alert.title}</h3><p>{alert.message}</p><p style=\"color:#888\">— Stratus</p>"
    for email in active_admin_emails(db):
        try:
            result["emails"][email] = channel.send_email(email, f"[{tag}] {alert.title}", body)
        except Exception as e:
            logger.error("Email channel raised for %s: %s", email, mask_secrets(str(e)))
            result["emails"][email] = False

    return result


def send_alert(
    db: Session,
    alert_type: str,
    severity: str,
    title: str,
    message: str,
    resource_id: str | None = None,
    channel: NotificationChannel | None = None,
    **kwargs: Any,
) -> Alert:
    """Record an alert unconditionally, then notify for high/critical severity."""
    alert = record_alert(db, alert_type, severity, title, message, resource_id=resource_id, **kwargs)
    notify(db, alert, channel)
    return alert


# ---------------------------------------------------------------------------
# Budget thresholds
# ---------------------------------------------------------------------------


def _budget_alert_exists(db: Session, budget_id: str, threshold: float, day: date) -> bool:
    start, end = _day_bounds(day)
    q = select(Alert).where(
        Alert.type == "budget",
        Alert.budget_id == budget_id,
        Alert.created_at >= start,
        Alert.created_at < end,
    )
    return any(
        float(a.details.get("threshold", -1)) == float(threshold)
        for a in db.execute(q).scalars()
    )


def check_budget_alerts(
    db: Session,
    now: datetime | None = None,
    channel: NotificationChannel | None = None,
) -> dict[str, int]:
    """Alert on the single highest threshold each active budget has crossed today.

    Thresholds are scanned in descending order. The first one the spend meets
    decides the outcome for this budget: if an alert for it already exists
    today nothing is created, and lower thresholds are not considered either.
    """
    now = now or datetime.now(timezone.utc)
    logger.info("Checking budget thresholds...")
    rows = db.execute(
        select(Budget, Subscription.display_name)
        .outerjoin(Subscription, Budget.subscription_id == Subscription.id)
        .where(Budget.is_active.is_(True))
    ).all()

    created = 0
    for budget, subscription_name in rows:
        pct = utilization_pct(budget.current_spend, budget.amount)
        for threshold in sorted(set(budget.alert_thresholds or []), reverse=True):
            if pct < threshold:
                continue
            if _budget_alert_exists(db, budget.id, threshold, now.date()):
                break

            scope = f" ({subscription_name})" if subscription_name else ""
            alert = record_alert(
                db,
                "budget",
                threshold_severity(threshold),
                f'Budget "{budget.name}" reached {round(pct)}%',
                f"Spent ${budget.current_spend:,.2f} of ${budget.amount:,.2f} {budget.period} budget{scope}.",
                budget_id=budget.id,
                details={"threshold": threshold, "utilization": round(pct, 2)},
                created_at=now,
            )
            notify(db, alert, channel)
            created += 1
            break

    logger.info("  -> %d budget alerts created", created)
    return {"alerts_created": created}


# ---------------------------------------------------------------------------
# Inbox state transitions
# ---------------------------------------------------------------------------


def list_alerts(
    db: Session,
    alert_type: str | None = None,
    severity: str | None = None,
    is_read: bool | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Alert]:
    q = select(Alert)
    if alert_type:
        q = q.where(Alert.type == alert_type)
    if severity:
        q = q.where(Alert.severity == severity)
    if is_read is not None:
        q = q.where(Alert.is_read.is_(is_read))
    q = q.order_by(Alert.created_at.desc()).limit(limit).offset(offset)
    return list(db.execute(q).scalars())


def mark_read(db: Session, alert_id: str) -> Alert | None:
    alert = db.get(Alert, alert_id)
    if alert is None:
        return None
    alert.is_read = True
    db.commit()
    db.refresh(alert)
    return alert


def mark_all_read(db: Session) -> int:
    unread = db.execute(select(Alert).where(Alert.is_read.is_(False))).scalars().all()
    for alert in unread:
        alert.is_read = True
    db.commit()
    return len(unread)


def resolve_alert(db: Session, alert_id: str) -> Alert | None:
    """Resolve from either unread or read. resolved_at is stamped only once."""
    alert = db.get(Alert, alert_id)
    if alert is None:
        return None
    if not alert.is_resolved:
        alert.is_resolved = True
        alert.resolved_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(alert)
    return alert


def alert_stats(db: Session) -> dict[str, int]:
    """Unresolved counts per severity plus unread/active/total."""
    stats = {s: 0 for s in ("critical", "high", "medium", "low")}
    q = (
        select(Alert.severity, func.count())
        .where(Alert.is_resolved.is_(False))
        .group_by(Alert.severity)
    )
    for severity, count in db.execute(q).all():
        stats[severity] = count
    stats["active"] = sum(stats[s] for s in ("critical", "high", "medium", "low"))
    stats["unread"] = db.execute(
        select(func.count()).select_from(Alert).where(Alert.is_read.is_(False))
    ).scalar_one()
    stats["total"] = db.execute(select(func.count()).select_from(Alert)).scalar_one()
    return stats
