"""Background import jobs for uploaded catalog files.

An upload is written to ``settings.import_upload_dir`` and recorded as a
pending ``ImportJob``; a Celery worker claims it, runs the pipeline on the
stored file and records the outcome. Pending jobs can be cancelled until a
worker claims them. Status changes use conditional UPDATEs, so a cancel and
a claim racing for the same job cannot both win.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.config import settings
from catalog_sync.models import ImportJob
from catalog_sync.services.pipeline import SyncRunResult

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Lifecycle states of an import job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImportJobNotFoundError(Exception):
    """No import job exists with the requested id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Import job {job_id} not found")
        self.job_id = job_id


class ImportJobStateError(Exception):
    """The job's current status does not allow the requested change."""

    def __init__(self, job_id: str, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} import job {job_id} with status {status}")
        self.job_id = job_id
        self.status = status


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_import_job(job: ImportJob) -> dict[str, Any]:
    """Convert an ImportJob row to a JSON-ready dictionary."""
    return {
        "id": job.id,
        "status": job.status,
        "filename": job.filename,
        "file_size": job.file_size,
        "incremental": job.incremental,
        "sync_id": job.sync_id,
        "result": job.result,
        "error": job.error,
        "created_at": _isoformat(job.created_at),
        "started_at": _isoformat(job.started_at),
        "completed_at": _isoformat(job.completed_at),
    }


def remove_upload(job: ImportJob) -> None:
    """Delete the stored upload of a job, if it is still there."""
    Path(job.file_path).unlink(missing_ok=True)


async def create_import_job(
    session: AsyncSession,
    filename: str,
    contents: bytes,
    incremental: bool = False,
    upload_dir: str | Path | None = None,
) -> ImportJob:
    """Store an upload and add a pending job for it.

    The caller commits the session before queueing the job.

    Args:
        session: Database session
        filename: Original upload name
        contents: Uploaded catalog XML
        incremental: Only write new or changed products
        upload_dir: Where to store the upload (defaults to settings)

    Returns:
        The new pending ImportJob
    """
    job_id = str(uuid.uuid4())
    directory = Path(upload_dir or settings.import_upload_dir)
    path = directory / f"{job_id}.xml"

    def _write() -> None:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(contents)

    await asyncio.to_thread(_write)

    job = ImportJob(
        id=job_id,
        status=JobStatus.PENDING.value,
        filename=filename,
        file_path=str(path),
        file_size=len(contents),
        incremental=incremental,
        created_at=_utcnow(),
    )
    session.add(job)
    await session.flush()
    logger.info("Created import job %s for %s (%d bytes)", job_id, filename, len(contents))
    return job


async def get_import_job(session: AsyncSession, job_id: str) -> ImportJob | None:
    """Get an import job by id."""
    return await session.get(ImportJob, job_id)


async def list_import_jobs(
    session: AsyncSession,
    status: JobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ImportJob]:
    """List import jobs, newest first.

    Args:
        session: Database session
        status: Only return jobs in this status
        limit: Maximum number of results
        offset: Number of results to skip

    Returns:
        ImportJob rows ordered by created_at descending
    """
    query = select(ImportJob).order_by(desc(ImportJob.created_at)).offset(offset).limit(limit)
    if status is not None:
        query = query.where(ImportJob.status == status.value)
    result = await session.execute(query)
    return list(result.scalars().all())


async def _transition(
    session: AsyncSession,
    job_id: str,
    from_status: JobStatus,
    **values: Any,
) -> bool:
    """Apply ``values`` only if the job is still in ``from_status``."""
    result = await session.execute(
        update(ImportJob)
        .where(ImportJob.id == job_id, ImportJob.status == from_status.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def cancel_import_job(session: AsyncSession, job_id: str) -> ImportJob:
    """Cancel a job that no worker has claimed yet and delete its upload.

    Raises:
        ImportJobNotFoundError: If the job does not exist.
        ImportJobStateError: If the job is no longer pending.
    """
    cancelled = await _transition(
        session,
        job_id,
        JobStatus.PENDING,
        status=JobStatus.CANCELLED.value,
        completed_at=_utcnow(),
    )
    job = await session.get(ImportJob, job_id, populate_existing=True)
    if job is None:
        raise ImportJobNotFoundError(job_id)
    if not cancelled:
        raise ImportJobStateError(job_id, job.status, "cancel")

    remove_upload(job)
    logger.info("Cancelled import job %s", job_id)
    return job


async def claim_import_job(session: AsyncSession, job_id: str) -> ImportJob | None:
    """Move a pending job to processing.

    Returns:
        The claimed job, or None when the job is missing or no longer
        pending (for example cancelled).
    """
    claimed = await _transition(
        session,
        job_id,
        JobStatus.PENDING,
        status=JobStatus.PROCESSING.value,
        started_at=_utcnow(),
    )
    if not claimed:
        return None
    return await session.get(ImportJob, job_id, populate_existing=True)


async def finish_import_job(
    session: AsyncSession,
    job_id: str,
    result: SyncRunResult | None = None,
    error: str | None = None,
) -> ImportJob:
    """Record the final outcome of a job.

    A run result that did not fail completes the job; a failed run or an
    explicit ``error`` fails it.

    Raises:
        ImportJobNotFoundError: If the job does not exist.
    """
    job = await session.get(ImportJob, job_id)
    if job is None:
        raise ImportJobNotFoundError(job_id)

    if result is not None:
        job.sync_id = result.sync_id
        job.result = result.to_dict()
        if not result.success and error is None:
            error = str(result.error) if result.error else "No items were persisted"

    job.status = (JobStatus.FAILED if error else JobStatus.COMPLETED).value
    job.error = error
    job.completed_at = _utcnow()
    await session.flush()

    logger.info("Import job %s finished: %s", job_id, job.status)
    return job
