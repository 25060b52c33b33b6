"""Sync API — manual trigger and run status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ..services.orchestrator import SyncError, SyncOrchestrator
from .schemas import SyncReport, SyncStatus

router = APIRouter(prefix="/sync", tags=["sync"])


def get_orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(503, "Sync orchestrator not initialised")
    return orchestrator


@router.post("", response_model=SyncReport)
def trigger_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Run a full sync now. Returns ``skipped`` if one is already running."""
    try:
        return orchestrator.run_full_sync()
    except SyncError as e:
        raise HTTPException(502, f"Sync failed: {e}")


@router.get("/status", response_model=SyncStatus)
def sync_status(request: Request, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    scheduler = getattr(request.app.state, "scheduler", None)
    next_run = scheduler.get_status()["next_run_time"] if scheduler else None
    return {**orchestrator.status(), "next_run_time": next_run}
