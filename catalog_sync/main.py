"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from catalog_sync.api.geko import router as geko_router
from catalog_sync.api.geko import unhandled_error_handler
from catalog_sync.api.jobs import router as jobs_router
from catalog_sync.config import settings
from catalog_sync.services.scheduler import SchedulingError, SyncController, SyncScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the sync scheduler for the lifetime of the application."""
    controller = SyncController(SyncScheduler())
    app.state.sync_controller = controller

    if settings.geko_sync_autostart:
        try:
            controller.start()
        except SchedulingError as e:
            logger.error("Could not start catalog sync schedule: %s", e)

    yield

    await controller.shutdown()


app = FastAPI(
    title="GEKO Catalog Sync",
    description="Ingestion service for the GEKO supplier XML product catalog",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# Include API routers
app.include_router(geko_router)
app.include_router(jobs_router)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
