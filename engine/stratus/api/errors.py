"""Upstream error log — recent gateway/sync failures and circuit breaker state."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..services.orchestrator import SyncOrchestrator
from ..services.redact import mask_object
from ..services.resilience import error_tracker
from .sync import get_orchestrator

router = APIRouter(prefix="/errors", tags=["errors"])


@router.get("")
def list_errors(source: str | None = None, limit: int = 50):
    """Recent errors (messages already masked), newest first."""
    return {
        "errors": mask_object(error_tracker.get_errors(source=source, limit=limit)),
        "total": error_tracker.count,
        "by_source": error_tracker.by_source(),
    }


@router.get("/circuits")
def circuit_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    gw = orchestrator.gateways
    return {
        g.domain: g.circuit_status
        for g in (gw.subscriptions, gw.resources, gw.costs, gw.metrics, gw.advisor)
    }


@router.delete("", status_code=204)
def clear_errors():
    error_tracker.clear()
