"""FastAPI routes for background catalog import jobs."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.geko import ApiResponse, failure
from catalog_sync.database import get_db
from catalog_sync.services.import_jobs import (
    ImportJobNotFoundError,
    ImportJobStateError,
    JobStatus,
    cancel_import_job,
    get_import_job,
    list_import_jobs,
    serialize_import_job,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/geko-api/jobs", tags=["import-jobs"])


@router.get("", response_model=ApiResponse)
async def list_jobs(
    db: Annotated[AsyncSession, Depends(get_db)],
    status: Annotated[JobStatus | None, Query(description="Only jobs in this status")] = None,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum records")] = 50,
    offset: Annotated[int, Query(ge=0, description="Records to skip")] = 0,
) -> ApiResponse:
    """List import jobs, newest first."""
    jobs = await list_import_jobs(db, status=status, limit=limit, offset=offset)
    return ApiResponse(
        success=True,
        data={
            "items": [serialize_import_job(job) for job in jobs],
            "limit": limit,
            "offset": offset,
        },
    )


@router.get("/{job_id}", response_model=ApiResponse)
async def get_job(
    job_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ApiResponse | JSONResponse:
    """Get the status and outcome of one import job."""
    job = await get_import_job(db, job_id)
    if job is None:
        return failure(404, "Import job not found", f"Import job {job_id} not found")
    return ApiResponse(success=True, data=serialize_import_job(job))


@router.delete("/{job_id}", response_model=ApiResponse)
async def cancel_job(
    job_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ApiResponse | JSONResponse:
    """Cancel an import job that no worker has started yet.

    Returns:
        ApiResponse with the cancelled job; 404 for unknown jobs and 409
        for jobs that are already running or finished.
    """
    try:
        job = await cancel_import_job(db, job_id)
        await db.commit()
    except ImportJobNotFoundError as e:
        return failure(404, "Import job not found", str(e))
    except ImportJobStateError as e:
        return failure(409, "Import job cannot be cancelled", str(e))

    return ApiResponse(
        success=True,
        message=f"Import job {job_id} has been cancelled",
        data=serialize_import_job(job),
    )
