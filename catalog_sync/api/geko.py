"""FastAPI routes controlling the GEKO catalog sync.

All endpoints answer with a ``{success, message, data, error}`` envelope;
failures are reported in the envelope instead of raised to the caller.
"""

import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.database import get_db
from catalog_sync.services.import_jobs import (
    create_import_job,
    finish_import_job,
    remove_upload,
    serialize_import_job,
)
from catalog_sync.services.pipeline import SyncRunResult
from catalog_sync.services.scheduler import SchedulingError, SyncController, SyncScheduler
from catalog_sync.services.sync_health import (
    get_recent_sync_health,
    get_sync_health_stats,
    serialize_sync_health,
)
from catalog_sync.tasks.catalog_import import import_catalog_file as import_catalog_task

logger = logging.getLogger(__name__)

# Maximum catalog upload size: 50MB
MAX_FILE_SIZE = 50 * 1024 * 1024

SUPPORTED_EXTENSIONS = {".xml"}

SUPPORTED_CONTENT_TYPES = {
    "application/xml",
    "text/xml",
    "text/plain",
    "application/octet-stream",
}

router = APIRouter(prefix="/geko-api", tags=["geko"])


class ApiResponse(BaseModel):
    """Response envelope shared by all sync control endpoints."""

    success: bool = Field(description="Whether the request succeeded")
    message: str | None = Field(default=None, description="Human-readable status")
    data: Any = Field(default=None, description="Endpoint payload")
    error: str | None = Field(default=None, description="Error description on failure")


class StartSyncRequest(BaseModel):
    """Request body for starting the recurring sync."""

    model_config = ConfigDict(populate_by_name=True)

    api_url: str | None = Field(
        default=None, alias="apiUrl", description="Catalog feed URL (defaults to settings)"
    )
    interval_minutes: int | None = Field(
        default=None,
        alias="intervalMinutes",
        description="Minutes between runs: 1-59, or whole hours up to 23h",
    )


class ManualSyncRequest(BaseModel):
    """Request body for a manual sync."""

    model_config = ConfigDict(populate_by_name=True)

    api_url: str | None = Field(
        default=None, alias="apiUrl", description="Catalog feed URL (defaults to settings)"
    )
    incremental: bool = Field(
        default=False, description="Only write new or changed products"
    )


def get_sync_controller(request: Request) -> SyncController:
    """Dependency returning the application's sync controller."""
    controller = getattr(request.app.state, "sync_controller", None)
    if controller is None:
        controller = SyncController(SyncScheduler())
        request.app.state.sync_controller = controller
    return controller


def failure(status_code: int, message: str, error: str, data: Any = None) -> JSONResponse:
    """Build an error envelope response."""
    body = ApiResponse(success=False, message=message, error=error, data=data)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Answer uncaught exceptions with the error envelope instead of plain text."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return failure(500, "Internal server error", str(exc) or type(exc).__name__)


def _run_response(result: SyncRunResult, label: str) -> ApiResponse | JSONResponse:
    if not result.success:
        return failure(
            500,
            f"{label} failed",
            str(result.error) if result.error else "No items were persisted",
            data=result.to_dict(),
        )
    return ApiResponse(
        success=True,
        message=f"{label} completed with status {result.status.value}",
        data=result.to_dict(),
    )


@router.post("/start-sync", response_model=ApiResponse)
async def start_sync(
    controller: Annotated[SyncController, Depends(get_sync_controller)],
    body: Annotated[StartSyncRequest | None, Body()] = None,
) -> ApiResponse | JSONResponse:
    """Start (or replace) the recurring catalog sync.

    Returns:
        ApiResponse with the active schedule.
    """
    body = body or StartSyncRequest()
    try:
        schedule = controller.start(body.api_url, body.interval_minutes)
    except SchedulingError as e:
        return failure(400, "Failed to schedule catalog sync", str(e))

    return ApiResponse(
        success=True,
        message=f"Catalog sync scheduled ({schedule['expression']})",
        data=schedule,
    )


@router.post("/stop-sync", response_model=ApiResponse)
async def stop_sync(
    controller: Annotated[SyncController, Depends(get_sync_controller)],
) -> ApiResponse:
    """Stop the recurring catalog sync. Stopping when idle is not an error."""
    stopped = await controller.stop()
    message = "Catalog sync stopped" if stopped else "No catalog sync was scheduled"
    return ApiResponse(success=True, message=message, data=controller.status())


@router.get("/sync-status", response_model=ApiResponse)
async def sync_status(
    controller: Annotated[SyncController, Depends(get_sync_controller)],
) -> ApiResponse:
    """Report whether the recurring sync is active and its schedule."""
    return ApiResponse(success=True, data=controller.status())


@router.post("/manual-sync", response_model=ApiResponse)
async def manual_sync(
    controller: Annotated[SyncController, Depends(get_sync_controller)],
    body: Annotated[ManualSyncRequest | None, Body()] = None,
) -> ApiResponse | JSONResponse:
    """Run a catalog sync now and wait for its outcome.

    Returns:
        ApiResponse with duration, status and per-entity counts. A failed
        run answers 500 with the same data and the error message.
    """
    body = body or ManualSyncRequest()
    try:
        result = await controller.manual_sync(body.api_url, incremental=body.incremental)
    except Exception as e:
        logger.exception("Manual catalog sync crashed")
        return failure(500, "Manual sync failed", str(e))
    return _run_response(result, "Manual sync")


def validate_file_extension(filename: str) -> str:
    """Validate and return the file extension.

    Raises:
        ValueError: If the filename is missing or not an XML file.
    """
    if not filename:
        raise ValueError("Filename is required")

    ext = ""
    if "." in filename:
        ext = "." + filename.rsplit(".", 1)[-1].lower()

    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(
            f"Unsupported file type. Supported types: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )
    return ext


async def read_upload(file: UploadFile) -> bytes:
    """Read an upload, enforcing content type and size limits.

    Raises:
        ValueError: If the upload is empty, too large or of the wrong type.
    """
    if file.content_type and file.content_type not in SUPPORTED_CONTENT_TYPES:
        raise ValueError(f"Content type '{file.content_type}' is not an XML type")

    contents = await file.read(MAX_FILE_SIZE + 1)
    if len(contents) == 0:
        raise ValueError("Uploaded file is empty")
    if len(contents) > MAX_FILE_SIZE:
        raise ValueError(
            f"File size exceeds maximum allowed size of {MAX_FILE_SIZE // (1024 * 1024)}MB"
        )
    return contents


@router.post("/import", response_model=ApiResponse, status_code=status.HTTP_202_ACCEPTED)
async def import_catalog_file(
    file: Annotated[UploadFile, File(description="GEKO catalog XML file")],
    db: Annotated[AsyncSession, Depends(get_db)],
    incremental: Annotated[
        bool, Form(description="Only write new or changed products")
    ] = False,
) -> ApiResponse | JSONResponse:
    """Queue an uploaded GEKO catalog XML file for a background import.

    The upload is stored and a Celery worker runs it through the same
    pipeline as a fetched catalog, with the source recorded as
    ``upload:<filename>``. Progress is available under ``/geko-api/jobs``.

    Returns:
        ApiResponse (202) with the pending job.
    """
    filename = file.filename or ""
    try:
        validate_file_extension(filename)
        contents = await read_upload(file)
    except ValueError as e:
        return failure(400, "Invalid upload", str(e))

    job = await create_import_job(db, filename, contents, incremental=incremental)
    # The worker must see the job row before it runs
    await db.commit()

    try:
        import_catalog_task.delay(job.id)
    except Exception as e:
        logger.exception("Could not queue import job %s", job.id)
        job = await finish_import_job(db, job.id, error=f"Could not queue import: {e}")
        remove_upload(job)
        await db.commit()
        return failure(
            503, "Catalog import could not be queued", str(e), data=serialize_import_job(job)
        )

    return ApiResponse(
        success=True,
        message=f"Import of {filename} queued as job {job.id}",
        data=serialize_import_job(job),
    )


@router.get("/health/recent", response_model=ApiResponse)
async def recent_sync_health(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum records")] = 10,
    offset: Annotated[int, Query(ge=0, description="Records to skip")] = 0,
) -> ApiResponse:
    """List the most recent sync runs, newest first."""
    records = await get_recent_sync_health(db, limit=limit, offset=offset)
    return ApiResponse(
        success=True,
        data={
            "items": [serialize_sync_health(r) for r in records],
            "limit": limit,
            "offset": offset,
        },
    )


@router.get("/health/stats", response_model=ApiResponse)
async def sync_health_stats(
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Annotated[
        datetime | None,
        Query(alias="startDate", description="Window start (default: 7 days ago)"),
    ] = None,
    end_date: Annotated[
        datetime | None,
        Query(alias="endDate", description="Window end (default: now)"),
    ] = None,
) -> ApiResponse | JSONResponse:
    """Aggregate statistics over sync runs in a time window.

    Dates without a timezone are taken as UTC.
    """
    start_date = as_utc(start_date)
    end_date = as_utc(end_date)
    if start_date and end_date and start_date > end_date:
        return failure(400, "Invalid date range", "startDate must be before endDate")

    stats = await get_sync_health_stats(db, start_date=start_date, end_date=end_date)
    return ApiResponse(success=True, data=stats.to_dict())
