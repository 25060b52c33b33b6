"""Budget API — create and list budgets, utilisation status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.budget import Budget
from ..models.subscription import ResourceGroup, Subscription
from ..services.budget_monitor import budget_status
from .schemas import BudgetCreate, BudgetOut, BudgetStatus

router = APIRouter(prefix="/budgets", tags=["budgets"])


@router.get("", response_model=list[BudgetOut])
def list_budgets(active_only: bool = True, db: Session = Depends(get_db)):
    q = select(Budget)
    if active_only:
        q = q.where(Budget.is_active.is_(True))
    return db.execute(q.order_by(Budget.created_at.desc())).scalars().all()


@router.post("", response_model=BudgetOut, status_code=201)
def create_budget(body: BudgetCreate, db: Session = Depends(get_db)):
    if body.subscription_id and not db.get(Subscription, body.subscription_id):
        raise HTTPException(404, "Subscription not found")
    data = body.model_dump()
    if body.resource_group_id:
        group = db.get(ResourceGroup, body.resource_group_id)
        if not group:
            raise HTTPException(404, "Resource group not found")
        if body.subscription_id and body.subscription_id != group.subscription_id:
            raise HTTPException(422, "Resource group belongs to a different subscription")
        data["subscription_id"] = group.subscription_id
    budget = Budget(**data)
    db.add(budget)
    db.commit()
    db.refresh(budget)
    return budget


@router.get("/status", response_model=list[BudgetStatus])
def get_budget_status(db: Session = Depends(get_db)):
    return budget_status(db)
