"""initial schema — subscriptions, inventory, cost facts, budgets, alerts

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subscription_id", sa.String(64), nullable=False, unique=True),
        sa.Column("display_name", sa.String(256), server_default=""),
        sa.Column("state", sa.String(32), server_default="Enabled"),
        *_timestamps(),
    )

    op.create_table(
        "resource_groups",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("location", sa.String(64), server_default=""),
        sa.Column("tags", sa.JSON, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", "subscription_id", name="uq_resource_groups_name_subscription"),
    )

    op.create_table(
        "resources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource_id", sa.String(512), nullable=False, unique=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("type", sa.String(128), server_default=""),
        sa.Column("location", sa.String(64), server_default=""),
        sa.Column("resource_group_id", sa.String(36), sa.ForeignKey("resource_groups.id"), nullable=True),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("sku", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), server_default="running"),
        sa.Column("tags", sa.JSON, server_default="{}"),
        sa.Column("properties", sa.JSON, server_default="{}"),
        *_timestamps(),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "cost_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource_id", sa.String(36), sa.ForeignKey("resources.id"), nullable=True),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("resource_ref", sa.String(512), server_default=""),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("cost", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("service_name", sa.String(128), server_default=""),
        sa.Column("meter_category", sa.String(128), server_default=""),
        sa.Column("region", sa.String(64), server_default=""),
        sa.Column("tags", sa.JSON, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("resource_ref", "date", "service_name", name="uq_cost_records_resource_date_service"),
    )

    op.create_table(
        "usage_metrics",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource_id", sa.String(36), sa.ForeignKey("resources.id"), nullable=False),
        sa.Column("metric_name", sa.String(64), nullable=False),
        sa.Column("metric_value", sa.Float, nullable=False),
        sa.Column("unit", sa.String(32), server_default=""),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "cost_anomalies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource_id", sa.String(36), sa.ForeignKey("resources.id"), nullable=False),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("expected_cost", sa.Float, server_default=sa.text("0.0")),
        sa.Column("actual_cost", sa.Float, server_default=sa.text("0.0")),
        sa.Column("deviation_percentage", sa.Float, server_default=sa.text("0.0")),
        sa.Column("z_score", sa.Float, server_default=sa.text("0.0")),
        sa.Column("severity", sa.String(16), server_default="medium"),
        sa.Column("is_resolved", sa.Boolean, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("resource_id", "date", name="uq_cost_anomalies_resource_date"),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("period", sa.String(16), server_default="monthly"),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("resource_group_id", sa.String(36), sa.ForeignKey("resource_groups.id"), nullable=True),
        sa.Column("current_spend", sa.Float, server_default=sa.text("0.0")),
        sa.Column("alert_thresholds", sa.JSON, server_default="[50, 75, 90, 100]"),
        sa.Column("is_active", sa.Boolean, server_default=sa.text("1")),
        *_timestamps(),
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("message", sa.Text, server_default=""),
        sa.Column("resource_id", sa.String(36), sa.ForeignKey("resources.id"), nullable=True),
        sa.Column("budget_id", sa.String(36), sa.ForeignKey("budgets.id"), nullable=True),
        sa.Column("is_read", sa.Boolean, server_default=sa.text("0")),
        sa.Column("is_resolved", sa.Boolean, server_default=sa.text("0")),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "recommendations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("external_id", sa.String(512), nullable=False, unique=True),
        sa.Column("resource_id", sa.String(36), sa.ForeignKey("resources.id"), nullable=True),
        sa.Column("type", sa.String(64), server_default=""),
        sa.Column("category", sa.String(32), server_default="cost"),
        sa.Column("impact", sa.String(16), server_default="medium"),
        sa.Column("title", sa.String(512), server_default=""),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("estimated_savings", sa.Float, server_default=sa.text("0.0")),
        sa.Column("action", sa.String(32), server_default="review"),
        sa.Column("status", sa.String(16), server_default="active"),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(256), nullable=False, unique=True),
        sa.Column("display_name", sa.String(128), server_default=""),
        sa.Column("role", sa.String(16), server_default="viewer"),
        sa.Column("is_active", sa.Boolean, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(64), primary_key=True),
        sa.Column("value", sa.Text, server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "settings", "users", "recommendations", "alerts", "budgets", "cost_anomalies",
        "usage_metrics", "cost_records", "resources", "resource_groups", "subscriptions",
    ):
        op.drop_table(table)
