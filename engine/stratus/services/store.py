"""Reconciliation store — upserts keyed by stable external identifiers.

Dimension rows (subscriptions, resource groups, resources, recommendations)
are upserted: looked up by their upstream key, then updated or created.
Fact rows (cost records, anomalies) are append-only and go through
``insert_ignore``, which relies on the table's unique constraint so a
duplicate is a silent no-op rather than an error or an overwrite.

Functions here flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..gateways.rows import AdvisoryRow, MetricPoint, ResourceRow, SubscriptionRow
from ..models.cost import CostAnomaly, CostRecord, UsageMetric
from ..models.recommendation import Recommendation
from ..models.resource import Resource
from ..models.setting import Setting
from ..models.subscription import ResourceGroup, Subscription
from ..models.user import User

logger = logging.getLogger(__name__)

_COST_KEY = ["resource_ref", "date", "service_name"]
_ANOMALY_KEY = ["resource_id", "date"]

INACTIVE_STATES = ("Inactive", "Disabled", "Deleted")


def insert_ignore(db: Session, model: type, values: dict[str, Any], conflict_cols: list[str]) -> bool:
    """INSERT … ON CONFLICT DO NOTHING. Returns True if a row was written."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    else:
        exists = db.execute(
            select(model).filter_by(**{c: values.get(c) for c in conflict_cols}).limit(1)
        ).first()
        if exists:
            return False
        stmt = insert(model).values(**values)
    return db.execute(stmt).rowcount > 0


# ---------------------------------------------------------------------------
# Subscriptions & resource groups
# ---------------------------------------------------------------------------


def upsert_subscription(db: Session, row: SubscriptionRow) -> Subscription:
    sub = db.execute(
        select(Subscription).where(Subscription.subscription_id == row.subscription_id)
    ).scalar_one_or_none()
    if sub is None:
        sub = Subscription(subscription_id=row.subscription_id)
        db.add(sub)
    sub.display_name = row.display_name
    sub.state = row.state
    db.flush()
    return sub


def deactivate_missing_subscriptions(db: Session, seen: Iterable[str]) -> int:
    """Mark subscriptions absent from the upstream listing as Inactive. Never deletes."""
    seen_ids = set(seen)
    count = 0
    for sub in db.execute(select(Subscription)).scalars():
        if sub.subscription_id not in seen_ids and sub.state != "Inactive":
            sub.state = "Inactive"
            count += 1
    db.flush()
    return count


def active_subscription_ids(db: Session) -> list[str]:
    """Upstream IDs of subscriptions that are still usable for sync."""
    q = (
        select(Subscription.subscription_id)
        .where(Subscription.state.not_in(INACTIVE_STATES))
        .order_by(Subscription.subscription_id)
    )
    return list(db.execute(q).scalars())


def subscription_pk_map(db: Session) -> dict[str, str]:
    """Upstream subscription ID → local primary key."""
    return dict(db.execute(select(Subscription.subscription_id, Subscription.id)).all())


def ensure_resource_group(
    db: Session, name: str, subscription_pk: str, location: str = "", tags: dict | None = None,
) -> ResourceGroup:
    """Create the group on first sighting; later sightings leave it untouched."""
    q = select(ResourceGroup).where(
        ResourceGroup.name == name, ResourceGroup.subscription_id == subscription_pk,
    )
    group = db.execute(q).scalar_one_or_none()
    if group is None:
        group = ResourceGroup(name=name, subscription_id=subscription_pk, location=location, tags=tags or {})
        db.add(group)
        db.flush()
    return group


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


def upsert_resource(
    db: Session, row: ResourceRow, subscription_pk: str, resource_group_pk: str | None,
) -> tuple[Resource, bool]:
    """Insert or overwrite a resource by its upstream ID. Returns (resource, created)."""
    resource = db.execute(
        select(Resource).where(Resource.resource_id == row.resource_id)
    ).scalar_one_or_none()
    created = resource is None
    if created:
        resource = Resource(resource_id=row.resource_id, subscription_id=subscription_pk, name=row.name)
        db.add(resource)

    resource.name = row.name
    resource.type = row.type
    resource.location = row.location
    resource.subscription_id = subscription_pk
    resource.resource_group_id = resource_group_pk
    resource.sku = row.sku
    resource.status = row.status.value
    resource.tags = dict(row.tags)
    resource.properties = dict(row.properties)
    resource.last_seen_at = datetime.now(timezone.utc)
    db.flush()
    return resource, created


def resource_pk_map(db: Session) -> dict[str, str]:
    """Upstream resource ID (lower-cased) → local primary key."""
    return {ext.lower(): pk for ext, pk in db.execute(select(Resource.resource_id, Resource.id)).all()}


def resource_tags_map(db: Session) -> dict[str, dict]:
    """Upstream resource ID (lower-cased) → current tags, snapshotted onto new cost records."""
    return {ext.lower(): dict(tags or {}) for ext, tags in db.execute(select(Resource.resource_id, Resource.tags)).all()}


def sample_running_vms(db: Session, limit: int) -> list[tuple[str, str, str]]:
    """(resource pk, upstream resource ID, upstream subscription ID) for running VMs."""
    q = (
        select(Resource.id, Resource.resource_id, Subscription.subscription_id)
        .join(Subscription, Resource.subscription_id == Subscription.id)
        .where(
            Resource.type == "microsoft.compute/virtualmachines",
            Resource.status == "running",
        )
        .order_by(Resource.name)
        .limit(limit)
    )
    return [tuple(r) for r in db.execute(q).all()]


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------


def insert_cost_record(
    db: Session,
    *,
    resource_ref: str,
    cost_date: date,
    cost: float,
    service_name: str = "",
    resource_pk: str | None = None,
    subscription_pk: str | None = None,
    currency: str = "USD",
    meter_category: str = "",
    region: str = "",
    tags: dict | None = None,
) -> bool:
    """Append a cost record. An existing (resource, date, service) row is never overwritten."""
    return insert_ignore(db, CostRecord, {
        "resource_id": resource_pk,
        "subscription_id": subscription_pk,
        "resource_ref": resource_ref,
        "date": cost_date,
        "cost": round(cost, 2),
        "currency": currency or "USD",
        "service_name": service_name,
        "meter_category": meter_category,
        "region": region,
        "tags": tags or {},
    }, _COST_KEY)


def insert_usage_metrics(
    db: Session, resource_pk: str, metric_name: str, points: Iterable[MetricPoint],
) -> int:
    count = 0
    for point in points:
        db.add(UsageMetric(
            resource_id=resource_pk,
            metric_name=metric_name,
            metric_value=point.value,
            unit=point.unit,
            timestamp=point.timestamp,
        ))
        count += 1
    db.flush()
    return count


def insert_anomaly(db: Session, values: dict[str, Any]) -> bool:
    """Record an anomaly unless one exists for (resource, date)."""
    return insert_ignore(db, CostAnomaly, values, _ANOMALY_KEY)


def upsert_recommendation(db: Session, row: AdvisoryRow, resource_pk: str | None) -> bool:
    """Insert or refresh an advisory. A user-set status (dismissed/implemented) is kept."""
    rec = db.execute(
        select(Recommendation).where(Recommendation.external_id == row.external_id)
    ).scalar_one_or_none()
    created = rec is None
    if created:
        rec = Recommendation(external_id=row.external_id, status="active", action="review")
        db.add(rec)
    rec.resource_id = resource_pk
    rec.type = row.category
    rec.category = row.canonical_category
    rec.impact = row.impact or "medium"
    rec.title = row.problem or row.solution
    rec.description = row.solution
    rec.estimated_savings = row.monthly_savings
    db.flush()
    return created


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def daily_costs(db: Session, start: date, end: date | None = None) -> list[tuple[date, float]]:
    """Total cost per day across all records, oldest first."""
    q = select(CostRecord.date, func.sum(CostRecord.cost)).where(CostRecord.date >= start)
    if end is not None:
        q = q.where(CostRecord.date <= end)
    q = q.group_by(CostRecord.date).order_by(CostRecord.date)
    return [(d, float(total or 0.0)) for d, total in db.execute(q).all()]


def active_admin_emails(db: Session) -> list[str]:
    q = select(User.email).where(User.role == "admin", User.is_active.is_(True)).order_by(User.email)
    return list(db.execute(q).scalars())


def get_setting(db: Session, key: str, default: str = "") -> str:
    setting = db.get(Setting, key)
    return setting.value if setting else default


def set_setting(db: Session, key: str, value: Any) -> None:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    setting = db.get(Setting, key)
    if setting:
        setting.value = text
    else:
        db.add(Setting(key=key, value=text))
    db.flush()
