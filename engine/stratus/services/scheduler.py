"""Scheduled sync — APScheduler cron job that drives the orchestrator."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .orchestrator import SyncError, SyncOrchestrator

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "full_sync"


class SyncScheduler:
    def __init__(self, orchestrator: SyncOrchestrator, cron: str | None = None) -> None:
        self.orchestrator = orchestrator
        self.cron = cron or orchestrator.schedule
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    async def sync_job(self) -> dict[str, Any] | None:
        """One scheduled run. The orchestrator is synchronous, so it runs in a worker thread."""
        try:
            report = await asyncio.to_thread(self.orchestrator.run_full_sync)
        except SyncError as e:
            # failure alert already persisted by the orchestrator
            logger.error("Scheduled sync failed: %s", e)
            return None
        if report.get("skipped"):
            logger.info("Scheduled sync skipped — previous run still active")
        return report

    def start(self) -> None:
        self.scheduler.add_job(
            self.sync_job,
            trigger=CronTrigger.from_crontab(self.cron, timezone="UTC"),
            id=SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Sync scheduled: %s", self.cron)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def get_status(self) -> dict[str, Any]:
        job = self.scheduler.get_job(SYNC_JOB_ID)
        return {
            "running": self.scheduler.running,
            "cron": self.cron,
            "next_run_time": job.next_run_time.isoformat() if job and job.next_run_time else None,
        }
