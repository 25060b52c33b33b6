"""Budget monitor — recomputes cached spend and reports utilisation per budget."""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..api.schemas import BudgetStatus
from ..models.budget import Budget
from ..models.cost import CostRecord
from ..models.resource import Resource


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def month_start(day: date) -> date:
    return day.replace(day=1)


def get_spending(
    db: Session, subscription_pk: str, start: date, end: date, resource_group_pk: str | None = None,
) -> float:
    """Sum a subscription's cost records between two dates, inclusive.

    With *resource_group_pk* only records linked to a resource in that group
    count; unattributed records are left out.
    """
    q = select(func.coalesce(func.sum(CostRecord.cost), 0.0)).where(
        CostRecord.subscription_id == subscription_pk,
        CostRecord.date >= start,
        CostRecord.date <= end,
    )
    if resource_group_pk:
        q = q.join(Resource, CostRecord.resource_id == Resource.id).where(
            Resource.resource_group_id == resource_group_pk,
        )
    return float(db.execute(q).scalar_one())


def recompute_budget_spend(db: Session, today: date | None = None) -> int:
    """Full recompute of current_spend for active monthly subscription-scoped budgets.

    Month-to-date is summed from scratch every time so backfilled or corrected
    cost days are picked up. Returns the number of budgets updated.
    """
    today = today or today_utc()
    budgets = db.execute(
        select(Budget).where(
            Budget.is_active.is_(True),
            Budget.period == "monthly",
            Budget.subscription_id.is_not(None),
        )
    ).scalars().all()

    for budget in budgets:
        budget.current_spend = round(
            get_spending(
                db, budget.subscription_id, month_start(today), today, budget.resource_group_id,
            ), 2,
        )
    db.flush()
    return len(budgets)


def utilization_pct(spend: float, amount: float) -> float:
    return spend / amount * 100 if amount > 0 else 0.0


def highest_crossed(thresholds: list[float], pct: float) -> float | None:
    for threshold in sorted(thresholds, reverse=True):
        if pct >= threshold:
            return threshold
    return None


def budget_status(db: Session) -> list[BudgetStatus]:
    """Utilisation snapshot for every active budget."""
    budgets = db.execute(
        select(Budget).where(Budget.is_active.is_(True)).order_by(Budget.name)
    ).scalars().all()
    results: list[BudgetStatus] = []

    for budget in budgets:
        pct = utilization_pct(budget.current_spend, budget.amount)
        crossed = highest_crossed(budget.alert_thresholds or [], pct)
        if pct >= 100:
            status = "exceeded"
        elif crossed is not None:
            status = "warning"
        else:
            status = "ok"
        results.append(BudgetStatus(
            budget_id=budget.id,
            name=budget.name,
            period=budget.period,
            subscription_id=budget.subscription_id,
            current_spend=round(budget.current_spend, 2),
            amount=budget.amount,
            utilization=round(pct, 2),
            highest_threshold_crossed=crossed,
            status=status,
        ))

    return results
