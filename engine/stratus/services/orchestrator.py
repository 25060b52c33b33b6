"""Sync orchestrator — pulls upstream data into the store in a fixed stage order.

Stages: subscriptions → resources → costs (+ budget spend recompute) →
metrics → recommendations → anomaly detection → budget alerts.

Only one run may be active per orchestrator; a second request while a run
is in progress returns ``{"skipped": True}`` immediately.

Failure policy:
  * subscriptions / costs — any upstream error aborts the run.
  * resources / recommendations — a transient failure for one subscription
    is logged and that subscription skipped; credential failures abort.
  * metrics — any per-resource failure is logged and skipped.
An aborted run records a high-severity system alert and raises ``SyncError``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..gateways.base import GatewaySet, TransientUpstreamError, UpstreamError
from .alerts import check_budget_alerts, record_alert, send_alert
from .anomaly import detect_anomalies
from .budget_monitor import recompute_budget_spend, today_utc
from .notifications import NotificationChannel
from .redact import mask_secrets
from .resilience import error_tracker
from .store import (
    active_subscription_ids,
    deactivate_missing_subscriptions,
    ensure_resource_group,
    get_setting,
    insert_cost_record,
    insert_usage_metrics,
    resource_pk_map,
    resource_tags_map,
    sample_running_vms,
    set_setting,
    subscription_pk_map,
    upsert_recommendation,
    upsert_resource,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

CPU_METRIC = "cpu_utilization"
LAST_REPORT_KEY = "sync.last_report"
SCHEDULE_KEY = "sync.schedule"


class SyncError(Exception):
    """A sync run aborted. The message is safe to show to users."""


class SyncOrchestrator:
    def __init__(
        self,
        gateways: GatewaySet,
        session_factory: Callable[[], Session] = SessionLocal,
        channel: NotificationChannel | None = None,
        cost_days: int = settings.sync_cost_days,
        metrics_sample_size: int = settings.metrics_sample_size,
        metrics_concurrency: int = settings.metrics_concurrency,
        metrics_lookback_hours: int = settings.metrics_lookback_hours,
        anomaly_lookback_days: int = settings.anomaly_lookback_days,
        anomaly_z_threshold: float = settings.anomaly_z_threshold,
        schedule: str = settings.sync_cron,
    ) -> None:
        self.gateways = gateways
        self.session_factory = session_factory
        self.channel = channel
        self.cost_days = cost_days
        self.metrics_sample_size = metrics_sample_size
        self.metrics_concurrency = max(1, metrics_concurrency)
        self.metrics_lookback_hours = metrics_lookback_hours
        self.anomaly_lookback_days = anomaly_lookback_days
        self.anomaly_z_threshold = anomaly_z_threshold
        self.schedule = schedule
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    # ── Entry points ──────────────────────────────────────────────────────

    def run_full_sync(self) -> dict[str, Any]:
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already running — skipping")
            return {"skipped": True}
        try:
            return self._run()
        finally:
            self._lock.release()

    def status(self) -> dict[str, Any]:
        """Whether a run is active, the configured schedule, and the last report."""
        db = self.session_factory()
        try:
            raw = get_setting(db, LAST_REPORT_KEY)
            schedule = get_setting(db, SCHEDULE_KEY, self.schedule)
        finally:
            db.close()

        return {
            "running": self.running,
            "schedule": schedule,
            "last_report": json.loads(raw) if raw else None,
        }

    def _run(self) -> dict[str, Any]:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        steps: dict[str, Any] = {}
        logger.info("Sync started")

        db = self.session_factory()
        try:
            try:
                steps["subscriptions"] = self.sync_subscriptions(db)
                steps["resources"] = self.sync_resources(db)
                steps["costs"] = self.sync_costs(db)
                steps["budgets_recomputed"] = self.recompute_budgets(db)
                steps["metrics"] = self.sync_metrics(db)
                steps["recommendations"] = self.sync_recommendations(db)
                steps["anomalies"] = detect_anomalies(
                    db,
                    lookback_days=self.anomaly_lookback_days,
                    z_threshold=self.anomaly_z_threshold,
                    channel=self.channel,
                )
                steps["budget_alerts"] = check_budget_alerts(db, channel=self.channel)["alerts_created"]
            except Exception as e:
                db.rollback()
                self._record_failure(db, e, steps)
                raise SyncError(mask_secrets(str(e)) or type(e).__name__) from e

            duration_ms = int((time.monotonic() - started) * 1000)
            report = {
                "skipped": False,
                "started_at": started_at.isoformat(),
                "duration_ms": duration_ms,
                "steps": steps,
            }
            record_alert(
                db, "system", "low", "Data sync completed",
                f"Sync completed in {duration_ms / 1000:.1f}s",
                details={"steps": steps, "duration_ms": duration_ms},
            )
            set_setting(db, LAST_REPORT_KEY, report)
            set_setting(db, SCHEDULE_KEY, self.schedule)
            db.commit()
        finally:
            db.close()

        logger.info("Sync complete in %dms: %s", duration_ms, steps)
        return report

    def _record_failure(self, db: Session, exc: Exception, steps: dict[str, Any]) -> None:
        message = mask_secrets(str(exc)) or type(exc).__name__
        logger.error("Sync failed after %s: %s", list(steps) or "no stages", message)
        error_tracker.record(source="sync", error=exc, context={"completed_stages": list(steps)})
        try:
            send_alert(
                db, "system", "high", "Data sync failed", message,
                channel=self.channel,
                details={"steps": steps, "error_type": type(exc).__name__},
            )
        except Exception:
            # store unreachable; the original error is what the caller needs
            db.rollback()
            logger.exception("Could not record sync failure alert")

    # ── Stages ────────────────────────────────────────────────────────────

    def sync_subscriptions(self, db: Session) -> int:
        logger.info("Syncing subscriptions...")
        rows = self.gateways.subscriptions.list_subscriptions()
        allowed = set(self.gateways.credentials.list_accessible_accounts())
        if allowed:
            rows = [r for r in rows if r.subscription_id in allowed]

        for row in rows:
            upsert_subscription(db, row)
        inactive = deactivate_missing_subscriptions(db, (r.subscription_id for r in rows))
        db.commit()
        logger.info("  -> %d subscriptions (%d marked inactive)", len(rows), inactive)
        return len(rows)

    def sync_resources(self, db: Session) -> int:
        logger.info("Syncing resources...")
        sub_pks = subscription_pk_map(db)
        count = 0

        for sub_id in active_subscription_ids(db):
            try:
                rows = self.gateways.resources.list_resources([sub_id])
            except TransientUpstreamError as e:
                logger.warning("  resources for %s skipped: %s", sub_id, mask_secrets(str(e)))
                continue

            for row in rows:
                sub_pk = sub_pks.get(row.subscription_id)
                if sub_pk is None:
                    logger.warning("  resource %s references unknown subscription %s", row.resource_id, row.subscription_id)
                    continue
                group_pk = None
                if row.resource_group:
                    group_pk = ensure_resource_group(db, row.resource_group, sub_pk, row.location).id
                upsert_resource(db, row, sub_pk, group_pk)
                count += 1
            # resource groups and resources for one subscription land together
            db.commit()

        logger.info("  -> %d resources", count)
        return count

    def sync_costs(self, db: Session) -> int:
        logger.info("Syncing cost records (%d days)...", self.cost_days)
        end = today_utc()
        start = end - timedelta(days=self.cost_days)
        sub_pks = subscription_pk_map(db)
        res_pks = resource_pk_map(db)
        res_tags = resource_tags_map(db)
        inserted = 0

        for sub_id in active_subscription_ids(db):
            for row in self.gateways.costs.query_costs(sub_id, start, end):
                if row.cost <= 0:
                    continue
                ref = row.resource_ref.lower()
                if insert_cost_record(
                    db,
                    resource_ref=ref,
                    cost_date=row.usage_date,
                    cost=row.cost,
                    service_name=row.service_name,
                    resource_pk=res_pks.get(ref),
                    subscription_pk=sub_pks.get(row.subscription_id or sub_id),
                    currency=row.currency,
                    meter_category=row.meter_category,
                    region=row.region,
                    tags=res_tags.get(ref),
                ):
                    inserted += 1
            db.commit()

        logger.info("  -> %d new cost records", inserted)
        return inserted

    def recompute_budgets(self, db: Session) -> int:
        count = recompute_budget_spend(db)
        db.commit()
        logger.info("  -> %d budgets recomputed", count)
        return count

    def sync_metrics(self, db: Session) -> int:
        logger.info("Syncing VM metrics (sample of %d)...", self.metrics_sample_size)
        vms = sample_running_vms(db, self.metrics_sample_size)
        if not vms:
            return 0

        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=self.metrics_lookback_hours)
        stored = 0

        # upstream calls fan out; session writes stay on this thread
        with ThreadPoolExecutor(max_workers=self.metrics_concurrency) as pool:
            futures = {
                pool.submit(self.gateways.metrics.get_cpu_metrics, sub_id, uri, start, end): (pk, uri)
                for pk, uri, sub_id in vms
            }
            for future in as_completed(futures):
                pk, uri = futures[future]
                try:
                    points = future.result()
                except (UpstreamError, ValueError) as e:
                    logger.warning("  metrics for %s skipped: %s", uri, mask_secrets(str(e)))
                    continue
                stored += insert_usage_metrics(db, pk, CPU_METRIC, points)

        db.commit()
        logger.info("  -> %d metric points from %d VMs", stored, len(vms))
        return stored

    def sync_recommendations(self, db: Session) -> int:
        logger.info("Syncing advisor recommendations...")
        res_pks = resource_pk_map(db)
        count = 0

        for sub_id in active_subscription_ids(db):
            try:
                rows = self.gateways.advisor.list_recommendations(sub_id)
            except TransientUpstreamError as e:
                logger.warning("  recommendations for %s skipped: %s", sub_id, mask_secrets(str(e)))
                continue
            for row in rows:
                upsert_recommendation(db, row, res_pks.get(row.resource_ref.lower()))
                count += 1
            db.commit()

        logger.info("  -> %d recommendations", count)
        return count
