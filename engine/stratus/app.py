"""Stratus — FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .db import init_db
from .services.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    init_db()
    if getattr(app.state, "orchestrator", None) is None:
        from .gateways.azure.arm import build_azure_gateways
        app.state.orchestrator = SyncOrchestrator(build_azure_gateways())

    scheduler = None
    if settings.sync_enabled:
        from .services.scheduler import SyncScheduler
        scheduler = SyncScheduler(app.state.orchestrator, settings.sync_cron)
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Scheduled sync disabled (STRATUS_SYNC_ENABLED=false)")
    yield
    if scheduler:
        scheduler.stop()
        app.state.scheduler = None


def create_app(orchestrator: SyncOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Cloud cost sync, anomaly detection and budget alerting",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.scheduler = None

    # API key auth (when STRATUS_API_KEY is set)
    from .middleware import ApiKeyMiddleware
    app.add_middleware(ApiKeyMiddleware)

    from .api.health import router as health_router
    from .api.sync import router as sync_router
    from .api.alerts import router as alerts_router
    from .api.anomalies import router as anomalies_router
    from .api.forecast import router as forecast_router
    from .api.budget import router as budget_router
    from .api.errors import router as errors_router
    app.include_router(health_router)
    app.include_router(sync_router, prefix="/api")
    app.include_router(alerts_router, prefix="/api")
    app.include_router(anomalies_router, prefix="/api")
    app.include_router(forecast_router, prefix="/api")
    app.include_router(budget_router, prefix="/api")
    app.include_router(errors_router, prefix="/api")

    return app


app = create_app()
