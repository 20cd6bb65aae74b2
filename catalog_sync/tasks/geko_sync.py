"""Celery task running the GEKO catalog sync in a worker."""

import asyncio
import logging
from typing import Any

from catalog_sync.celery_app import celery_app
from catalog_sync.database import create_engine, create_session_factory
from catalog_sync.services.geko_client import FetchError
from catalog_sync.services.persister import PersistMode
from catalog_sync.services.pipeline import run_catalog_sync
from catalog_sync.services.sync_health import SyncType

logger = logging.getLogger(__name__)


async def _async_sync_geko_catalog(
    api_url: str | None,
    sync_type: str,
    mode: str,
) -> dict[str, Any]:
    """Async implementation of the catalog sync task.

    A dedicated engine is created because every task invocation runs in its
    own event loop.

    Returns:
        Dictionary with the run outcome

    Raises:
        FetchError: If the catalog could not be downloaded.
    """
    engine = create_engine()
    try:
        result = await run_catalog_sync(
            api_url,
            sync_type=SyncType(sync_type),
            mode=PersistMode(mode),
            session_factory=create_session_factory(engine),
        )
    finally:
        await engine.dispose()

    if isinstance(result.error, FetchError):
        result.raise_for_error()
    return result.to_dict()


@celery_app.task(
    bind=True,
    name="catalog_sync.tasks.geko_sync.sync_geko_catalog",
    max_retries=3,
    default_retry_delay=300,  # 5 minutes
    autoretry_for=(FetchError,),
)
def sync_geko_catalog(
    self: Any,
    api_url: str | None = None,
    sync_type: str = "scheduled",
    mode: str = "full",
) -> dict[str, Any]:
    """Celery task to sync the GEKO catalog.

    Fetches the catalog XML, transforms it and upserts it into the catalog
    tables, recording the run in sync_health. Download failures are retried;
    other failures are recorded on the sync record and returned.

    Returns:
        Dictionary with sync results including counts and any error
    """
    logger.info("Starting GEKO catalog sync task (%s, %s)", sync_type, mode)
    try:
        result = asyncio.run(_async_sync_geko_catalog(api_url, sync_type, mode))
    except FetchError:
        logger.exception("GEKO catalog download failed")
        raise
    except Exception as e:
        logger.exception("GEKO catalog sync task failed")
        raise self.retry(exc=e) from e

    logger.info(
        "GEKO catalog sync completed: status=%s items=%s",
        result["status"],
        result["items_processed"],
    )
    return result
