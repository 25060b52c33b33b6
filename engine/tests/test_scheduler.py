"""Tests for the scheduled sync job."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from stratus.services.orchestrator import SyncError, SyncOrchestrator
from stratus.services.scheduler import SyncScheduler


def _orchestrator(**kwargs) -> MagicMock:
    orch = MagicMock(spec=SyncOrchestrator)
    orch.schedule = "0 */6 * * *"
    for key, value in kwargs.items():
        setattr(orch.run_full_sync, key, value)
    return orch


def test_cron_defaults_to_orchestrator_schedule():
    assert SyncScheduler(_orchestrator()).cron == "0 */6 * * *"
    assert SyncScheduler(_orchestrator(), "*/15 * * * *").cron == "*/15 * * * *"


@pytest.mark.asyncio
async def test_job_returns_report():
    sched = SyncScheduler(_orchestrator(return_value={"skipped": False, "steps": {"costs": 3}}))
    report = await sched.sync_job()
    assert report["steps"] == {"costs": 3}


@pytest.mark.asyncio
async def test_job_passes_through_skip():
    sched = SyncScheduler(_orchestrator(return_value={"skipped": True}))
    assert await sched.sync_job() == {"skipped": True}


@pytest.mark.asyncio
async def test_failed_run_does_not_escape_job():
    orch = _orchestrator(side_effect=SyncError("upstream down"))
    assert await SyncScheduler(orch).sync_job() is None
    orch.run_full_sync.assert_called_once()


@pytest.mark.asyncio
async def test_start_registers_single_cron_job():
    sched = SyncScheduler(_orchestrator())
    sched.start()
    try:
        job = sched.scheduler.get_job("full_sync")
        assert job.max_instances == 1
        assert sched.get_status()["running"] is True
        assert sched.get_status()["next_run_time"] is not None
    finally:
        sched.stop()


def test_status_before_start():
    status = SyncScheduler(_orchestrator()).get_status()
    assert status == {"running": False, "cron": "0 */6 * * *", "next_run_time": None}
