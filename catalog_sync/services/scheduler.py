"""Recurring catalog sync scheduling and the sync controller.

``SyncScheduler`` holds at most one recurring job. Its timing comes from a
Celery ``crontab`` built from the requested interval; the job loop itself
runs as an ``asyncio.Task`` inside the API process. ``SyncController`` is
the single entry point used by the control API for start, stop, status and
manual runs.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from celery.schedules import crontab

from catalog_sync.config import settings
from catalog_sync.services.persister import PersistMode
from catalog_sync.services.pipeline import SyncRunResult, run_catalog_sync, run_scheduled_sync
from catalog_sync.services.sync_health import SyncType

logger = logging.getLogger(__name__)

MAX_INTERVAL_MINUTES = 23 * 60

SyncJob = Callable[[str], Awaitable[Any]]


class SchedulingError(Exception):
    """Raised when a recurring sync cannot be scheduled."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_cron_schedule(interval_minutes: int) -> tuple[str, crontab]:
    """Translate an interval into a cron expression and a Celery crontab.

    Intervals of 1-59 minutes run every N minutes; whole hours up to 23
    run at minute 0 every N hours.

    Args:
        interval_minutes: Minutes between runs.

    Returns:
        Tuple of (cron expression, crontab schedule).

    Raises:
        SchedulingError: If the interval cannot be expressed as a cron rule.
    """
    if isinstance(interval_minutes, bool) or not isinstance(interval_minutes, int):
        raise SchedulingError(f"Interval must be a whole number of minutes: {interval_minutes!r}")
    if interval_minutes < 1:
        raise SchedulingError(f"Interval must be at least 1 minute, got {interval_minutes}")

    if interval_minutes < 60:
        expression = f"*/{interval_minutes} * * * *"
        schedule = crontab(minute=f"*/{interval_minutes}", nowfun=_utcnow)
    elif interval_minutes % 60 == 0 and interval_minutes <= MAX_INTERVAL_MINUTES:
        hours = interval_minutes // 60
        expression = f"0 */{hours} * * *"
        schedule = crontab(minute=0, hour=f"*/{hours}", nowfun=_utcnow)
    else:
        raise SchedulingError(
            f"Interval {interval_minutes} is not supported: use 1-59 minutes "
            f"or whole hours up to {MAX_INTERVAL_MINUTES // 60}"
        )
    return expression, schedule


class SyncScheduler:
    """Single-slot registry for the recurring catalog sync.

    Starting a schedule replaces the active one. Stopping only prevents
    future ticks: a run that has already started is left to finish.
    """

    def __init__(self, job: SyncJob = run_scheduled_sync) -> None:
        self._job = job
        self._task: asyncio.Task[None] | None = None
        self._running_jobs: set[asyncio.Task[Any]] = set()
        self.expression: str | None = None
        self.interval_minutes: int | None = None
        self.api_url: str | None = None
        self.next_run_at: datetime | None = None
        self.last_run_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        """Whether a recurring job is active."""
        return self._task is not None and not self._task.done()

    def start(self, api_url: str, interval_minutes: int) -> dict[str, Any]:
        """Register the recurring job, replacing any active one.

        Args:
            api_url: Catalog feed URL for every run.
            interval_minutes: Minutes between runs.

        Returns:
            The new schedule (see ``status``).

        Raises:
            SchedulingError: For unsupported intervals or without a running
                event loop.
        """
        expression, schedule = build_cron_schedule(interval_minutes)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SchedulingError("Scheduling requires a running event loop") from e

        if self.is_running:
            logger.info("Replacing active sync schedule %s", self.expression)
            self._task.cancel()

        self.expression = expression
        self.interval_minutes = interval_minutes
        self.api_url = api_url
        self._task = loop.create_task(self._run(schedule, api_url), name="geko-sync-schedule")

        logger.info("Scheduled GEKO sync %s (%s) for %s", expression, interval_minutes, api_url)
        return self.status()

    async def stop(self) -> bool:
        """Cancel the recurring job.

        Returns:
            True if a job was active, False if there was nothing to stop.
        """
        task = self._task
        self._task = None
        self.next_run_at = None
        if task is None or task.done():
            return False

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped GEKO sync schedule %s", self.expression)
        return True

    def status(self) -> dict[str, Any]:
        """Report whether a job is active and its schedule."""
        running = self.is_running
        return {
            "is_running": running,
            "expression": self.expression if running else None,
            "interval_minutes": self.interval_minutes if running else None,
            "api_url": self.api_url if running else None,
            "next_run_at": self.next_run_at.isoformat() if running and self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }

    async def _run(self, schedule: crontab, api_url: str) -> None:
        due_after = _utcnow()
        while True:
            wait = max(schedule.remaining_estimate(due_after), timedelta(0))
            self.next_run_at = _utcnow() + wait
            await asyncio.sleep(wait.total_seconds())

            due_after = self.next_run_at
            self.last_run_at = _utcnow()
            job = asyncio.create_task(self._job(api_url))
            self._running_jobs.add(job)
            job.add_done_callback(self._job_done)

    def _job_done(self, job: asyncio.Task[Any]) -> None:
        self._running_jobs.discard(job)
        if job.cancelled():
            return
        exc = job.exception()
        if exc is not None:
            logger.error("Scheduled GEKO sync failed", exc_info=exc)


class SyncController:
    """Start, stop and inspect the recurring sync, or run one on demand."""

    def __init__(
        self,
        scheduler: SyncScheduler,
        runner: Callable[..., Awaitable[SyncRunResult]] = run_catalog_sync,
    ) -> None:
        self.scheduler = scheduler
        self.runner = runner

    def start(
        self,
        api_url: str | None = None,
        interval_minutes: int | None = None,
    ) -> dict[str, Any]:
        """Start (or replace) the recurring sync.

        Raises:
            SchedulingError: If the schedule cannot be registered.
        """
        if interval_minutes is None:
            interval_minutes = settings.geko_sync_interval_minutes
        return self.scheduler.start(api_url or settings.geko_api_url, interval_minutes)

    async def stop(self) -> bool:
        """Stop the recurring sync; True if one was active."""
        return await self.scheduler.stop()

    def status(self) -> dict[str, Any]:
        """Current schedule status."""
        return self.scheduler.status()

    async def manual_sync(
        self,
        api_url: str | None = None,
        incremental: bool = False,
    ) -> SyncRunResult:
        """Run the full pipeline now, independent of the schedule."""
        return await self.runner(
            api_url or settings.geko_api_url,
            sync_type=SyncType.INCREMENTAL if incremental else SyncType.MANUAL,
            mode=PersistMode.INCREMENTAL if incremental else PersistMode.FULL,
        )

    async def shutdown(self) -> None:
        """Stop scheduling on application shutdown."""
        await self.scheduler.stop()
