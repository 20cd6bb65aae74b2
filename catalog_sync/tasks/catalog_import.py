"""Celery task importing an uploaded catalog file in a worker."""

import asyncio
import logging
from pathlib import Path
from typing import Any

from catalog_sync.celery_app import celery_app
from catalog_sync.database import create_engine, create_session_factory
from catalog_sync.services.import_jobs import (
    claim_import_job,
    finish_import_job,
    remove_upload,
    serialize_import_job,
)
from catalog_sync.services.persister import PersistMode
from catalog_sync.services.pipeline import run_catalog_sync
from catalog_sync.services.sync_health import SyncType

logger = logging.getLogger(__name__)


async def _async_import_catalog_file(job_id: str) -> dict[str, Any]:
    """Async implementation of the catalog import task.

    Returns:
        The serialized job, or a ``skipped`` marker when the job was not
        pending any more.

    Raises:
        Exception: Unexpected pipeline errors, after the job is marked failed.
    """
    engine = create_engine()
    session_factory = create_session_factory(engine)
    try:
        async with session_factory() as session:
            job = await claim_import_job(session, job_id)
            await session.commit()
        if job is None:
            logger.info("Import job %s is no longer pending, skipping", job_id)
            return {"id": job_id, "status": "skipped"}

        try:
            content = await asyncio.to_thread(Path(job.file_path).read_bytes)
            result = await run_catalog_sync(
                content=content,
                source=f"upload:{job.filename}",
                sync_type=SyncType.INCREMENTAL if job.incremental else SyncType.MANUAL,
                mode=PersistMode.INCREMENTAL if job.incremental else PersistMode.FULL,
                session_factory=session_factory,
            )
        except Exception as e:
            async with session_factory() as session:
                await finish_import_job(session, job_id, error=str(e) or type(e).__name__)
                await session.commit()
            raise
        finally:
            remove_upload(job)

        async with session_factory() as session:
            job = await finish_import_job(session, job_id, result=result)
            await session.commit()
        return serialize_import_job(job)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="catalog_sync.tasks.catalog_import.import_catalog_file",
)
def import_catalog_file(self: Any, job_id: str) -> dict[str, Any]:
    """Celery task to import an uploaded catalog file.

    Claims the pending job, runs the pipeline on the stored upload and
    records the outcome on the job. Not retried: a rerun would find the job
    already claimed.

    Returns:
        Dictionary with the final job state
    """
    logger.info("Starting catalog import job %s", job_id)
    try:
        result = asyncio.run(_async_import_catalog_file(job_id))
    except Exception:
        logger.exception("Catalog import job %s failed", job_id)
        raise

    logger.info("Catalog import job %s finished: %s", job_id, result["status"])
    return result
