"""Tests for the alert dispatcher — persistence, fan-out, budget dedup, inbox transitions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from stratus.models.alert import Alert
from stratus.models.budget import Budget
from stratus.services.alerts import (
    alert_stats,
    check_budget_alerts,
    mark_all_read,
    mark_read,
    record_alert,
    resolve_alert,
    send_alert,
    threshold_severity,
)
from stratus.services.notifications import NotificationChannel

NOW = datetime(2026, 3, 15, 9, 30, tzinfo=timezone.utc)


class ExplodingChannel(NotificationChannel):
    def send_webhook(self, text):
        raise RuntimeError("webhook client bug")

    def send_email(self, to, subject, body):
        raise RuntimeError("smtp client bug")


def _budget(db, spend: float, amount: float = 1000.0, thresholds=None, **kwargs) -> Budget:
    budget = Budget(name="Prod monthly", amount=amount, current_spend=spend,
                    alert_thresholds=thresholds or [50, 75, 90, 100], **kwargs)
    db.add(budget)
    db.commit()
    return budget


def _budget_alerts(db) -> list[Alert]:
    return list(db.execute(select(Alert).where(Alert.type == "budget").order_by(Alert.created_at)).scalars())


# ---------------------------------------------------------------------------
# send_alert
# ---------------------------------------------------------------------------


class TestSendAlert:
    def test_low_severity_persisted_without_notification(self, db_session, admin, channel):
        alert = send_alert(db_session, "system", "low", "Data sync completed", "ok", channel=channel)
        assert alert.id
        assert channel.webhooks == []
        assert channel.emails == []

    def test_high_severity_fans_out_to_admins(self, db_session, admin, channel):
        send_alert(db_session, "anomaly", "high", "Spike", "cost went up", channel=channel)
        assert channel.webhooks == ["*[HIGH]* Spike\ncost went up"]
        assert [to for to, _, _ in channel.emails] == ["ops@example.com"]
        assert channel.emails[0][1] == "[HIGH] Spike"

    def test_channel_failure_does_not_lose_alert(self, db_session, admin, failing_channel):
        alert = send_alert(db_session, "system", "critical", "Down", "boom", channel=failing_channel)
        assert db_session.get(Alert, alert.id) is not None
        assert len(failing_channel.webhooks) == 1

    def test_raising_channel_is_contained(self, db_session, admin):
        alert = send_alert(db_session, "system", "critical", "Down", "boom", channel=ExplodingChannel())
        assert db_session.get(Alert, alert.id).title == "Down"

    def test_secrets_masked_in_text(self, db_session, monkeypatch):
        from stratus.config import settings
        monkeypatch.setattr(settings, "azure_client_secret", "SuperSecretValue123")
        alert = record_alert(db_session, "system", "high", "Sync failed", "bad secret SuperSecretValue123")
        assert "SuperSecretValue123" not in alert.message
        assert "Supe****123" in alert.message


# ---------------------------------------------------------------------------
# Budget thresholds
# ---------------------------------------------------------------------------


class TestBudgetAlerts:
    def test_highest_crossed_threshold_only(self, db_session, channel):
        budget = _budget(db_session, spend=950.0)

        assert check_budget_alerts(db_session, now=NOW, channel=channel) == {"alerts_created": 1}

        alerts = _budget_alerts(db_session)
        assert len(alerts) == 1
        assert alerts[0].severity == "high"
        assert alerts[0].details["threshold"] == 90
        assert alerts[0].budget_id == budget.id
        assert alerts[0].title == 'Budget "Prod monthly" reached 95%'
        assert alerts[0].message == "Spent $950.00 of $1,000.00 monthly budget."

    def test_same_day_deduplicated(self, db_session, channel):
        _budget(db_session, spend=950.0)
        check_budget_alerts(db_session, now=NOW, channel=channel)
        assert check_budget_alerts(db_session, now=NOW + timedelta(hours=6), channel=channel) == {"alerts_created": 0}
        assert len(_budget_alerts(db_session)) == 1

    def test_next_day_alerts_again(self, db_session, channel):
        _budget(db_session, spend=950.0)
        check_budget_alerts(db_session, now=NOW, channel=channel)
        assert check_budget_alerts(db_session, now=NOW + timedelta(days=1), channel=channel) == {"alerts_created": 1}
        assert len(_budget_alerts(db_session)) == 2

    def test_escalation_same_day_creates_new_alert(self, db_session, channel):
        budget = _budget(db_session, spend=950.0)
        check_budget_alerts(db_session, now=NOW, channel=channel)

        budget.current_spend = 1020.0
        db_session.commit()
        check_budget_alerts(db_session, now=NOW + timedelta(hours=1), channel=channel)

        alerts = _budget_alerts(db_session)
        assert [a.details["threshold"] for a in alerts] == [90, 100]
        assert alerts[1].severity == "critical"

    def test_below_all_thresholds(self, db_session, channel):
        _budget(db_session, spend=100.0)
        assert check_budget_alerts(db_session, now=NOW, channel=channel) == {"alerts_created": 0}

    def test_zero_amount_never_alerts(self, db_session, channel):
        _budget(db_session, spend=500.0, amount=0.0)
        assert check_budget_alerts(db_session, now=NOW, channel=channel) == {"alerts_created": 0}

    def test_inactive_budget_ignored(self, db_session, channel):
        _budget(db_session, spend=2000.0, is_active=False)
        assert check_budget_alerts(db_session, now=NOW, channel=channel) == {"alerts_created": 0}

    def test_high_budget_alert_notifies(self, db_session, admin, channel):
        _budget(db_session, spend=950.0)
        check_budget_alerts(db_session, now=NOW, channel=channel)
        assert len(channel.webhooks) == 1
        assert len(channel.emails) == 1

    def test_severity_mapping(self):
        assert threshold_severity(100) == "critical"
        assert threshold_severity(90) == "high"
        assert threshold_severity(75) == "medium"
        assert threshold_severity(50) == "low"


# ---------------------------------------------------------------------------
# Inbox state
# ---------------------------------------------------------------------------


class TestInbox:
    def test_resolve_without_read_sets_timestamp_once(self, db_session):
        alert = record_alert(db_session, "system", "medium", "t", "m")
        resolved = resolve_alert(db_session, alert.id)
        assert resolved.is_resolved
        assert not resolved.is_read
        first_stamp = resolved.resolved_at
        assert first_stamp is not None

        again = resolve_alert(db_session, alert.id)
        assert again.resolved_at == first_stamp

    def test_read_then_resolve(self, db_session):
        alert = record_alert(db_session, "system", "medium", "t", "m")
        assert mark_read(db_session, alert.id).is_read
        resolved = resolve_alert(db_session, alert.id)
        assert resolved.is_read and resolved.is_resolved

    def test_unknown_alert(self, db_session):
        assert mark_read(db_session, "missing") is None
        assert resolve_alert(db_session, "missing") is None

    def test_stats_and_mark_all_read(self, db_session):
        for severity in ("critical", "high", "high", "low"):
            record_alert(db_session, "system", severity, "t", "m")
        resolved = record_alert(db_session, "system", "medium", "t", "m")
        resolve_alert(db_session, resolved.id)

        stats = alert_stats(db_session)
        assert stats["critical"] == 1
        assert stats["high"] == 2
        assert stats["medium"] == 0
        assert stats["active"] == 4
        assert stats["unread"] == 5
        assert stats["total"] == 5

        assert mark_all_read(db_session) == 5
        assert alert_stats(db_session)["unread"] == 0
