"""FastAPI routes for the catalog sync service."""

from catalog_sync.api.geko import router as geko_router
from catalog_sync.api.jobs import router as jobs_router

__all__ = ["geko_router", "jobs_router"]
