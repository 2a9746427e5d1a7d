"""leadflow application entry point.

Wires the workflow service, the escalation scheduler and the HTTP routes
into one FastAPI app. Run with ``uvicorn leadflow.app:api`` or
``python scripts/run.py``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from leadflow.api.routes import register_exception_handlers, router
from leadflow.config import settings
from leadflow.crons.scheduler import EscalationScheduler
from leadflow.db.session import AsyncSessionLocal, close_db, init_db
from leadflow.observability.log_config import configure_logging
from leadflow.workflow.classifier import get_classifier
from leadflow.workflow.service import WorkflowService

configure_logging(settings.log_level, settings.env)

logger = structlog.get_logger()


def create_app(
    service: WorkflowService | None = None,
    scheduler: EscalationScheduler | None = None,
) -> FastAPI:
    """Build the app. Injected collaborators are used as-is and not disposed."""
    owns_database = service is None
    if service is None:
        service = WorkflowService(AsyncSessionLocal, classifier=get_classifier())
    if scheduler is None and owns_database and settings.scheduler_enabled:
        scheduler = EscalationScheduler(service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("app_starting", env=settings.env)

        if owns_database and settings.env == "development":
            logger.info("database_initializing")
            await init_db()

        if scheduler is not None:
            await scheduler.start()

        yield

        logger.info("app_shutting_down")
        if scheduler is not None:
            await scheduler.stop()
        if owns_database:
            await close_db()

    app = FastAPI(
        title="leadflow",
        version="0.1.0",
        description="Lead workflow & escalation engine",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.scheduler = scheduler
    register_exception_handlers(app)
    app.include_router(router)
    return app


api = create_app()
