"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import sessionmaker

from stratus.db import init_db
from stratus.models.resource import Resource
from stratus.models.subscription import Subscription
from stratus.models.user import User
from stratus.services.notifications import NotificationChannel
from stratus.services.store import insert_cost_record


class RecordingChannel(NotificationChannel):
    """Captures deliveries instead of sending them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.webhooks: list[str] = []
        self.emails: list[tuple[str, str, str]] = []

    def send_webhook(self, text: str) -> bool:
        self.webhooks.append(text)
        return not self.fail

    def send_email(self, to: str, subject: str, body: str) -> bool:
        self.emails.append((to, subject, body))
        return not self.fail


@pytest.fixture()
def session_factory():
    """In-memory SQLite shared by every session the factory hands out."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def failing_channel() -> RecordingChannel:
    return RecordingChannel(fail=True)


@pytest.fixture()
def admin(db_session) -> User:
    user = User(email="ops@example.com", display_name="Ops", role="admin")
    db_session.add_all([user, User(email="viewer@example.com", role="viewer")])
    db_session.commit()
    return user


@pytest.fixture()
def vm(db_session) -> Resource:
    """One subscription with one running VM."""
    sub = Subscription(subscription_id="sub-1", display_name="Production")
    db_session.add(sub)
    db_session.flush()
    resource = Resource(
        resource_id="/subscriptions/sub-1/resourcegroups/rg-app/providers/microsoft.compute/virtualmachines/vm-1",
        name="vm-1",
        type="microsoft.compute/virtualmachines",
        subscription_id=sub.id,
        status="running",
    )
    db_session.add(resource)
    db_session.commit()
    return resource


def seed_daily_costs(db, resource: Resource, costs: list[tuple[date, float]], service: str = "Virtual Machines"):
    for day, cost in costs:
        insert_cost_record(
            db,
            resource_ref=resource.resource_id,
            cost_date=day,
            cost=cost,
            service_name=service,
            resource_pk=resource.id,
            subscription_pk=resource.subscription_id,
        )
    db.commit()


@pytest.fixture()
def seed_costs():
    return seed_daily_costs
