"""Sync health tracking for catalog sync runs.

This module provides:
- SyncHealthTracker, which follows one run from start to finish and keeps
  its sync_health audit row up to date
- The outcome policy (success / partial_success / failed)
- Reporting queries over past runs
"""

import logging
import resource
import sys
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.models.sync_health import SyncHealth
from catalog_sync.services.alerts import send_sync_alert

logger = logging.getLogger(__name__)

# Error details kept on the audit row; error_count keeps counting past this
MAX_STORED_ERRORS = 1000

DEFAULT_STATS_WINDOW = timedelta(days=7)


class SyncType(str, Enum):
    """What triggered a sync run."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    """Stored status of a sync run."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class SyncPhase(str, Enum):
    """Phases a run moves through, in order."""

    CREATED = "created"
    FETCHING = "fetching"
    PARSING = "parsing"
    TRANSFORMING = "transforming"
    PERSISTING = "persisting"
    FINALIZING = "finalizing"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


PHASE_ORDER = {
    SyncPhase.CREATED: 0,
    SyncPhase.FETCHING: 1,
    SyncPhase.PARSING: 2,
    SyncPhase.TRANSFORMING: 3,
    SyncPhase.PERSISTING: 4,
    SyncPhase.FINALIZING: 5,
    SyncPhase.SUCCESS: 6,
    SyncPhase.PARTIAL_SUCCESS: 6,
    SyncPhase.FAILED: 6,
}


@dataclass
class SyncErrorEntry:
    """One error recorded during a run."""

    type: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


def determine_status(
    error_count: int,
    items_processed: dict[str, int] | None,
    fatal: bool = False,
) -> SyncStatus:
    """Classify the outcome of a run.

    Args:
        error_count: Errors recorded during the run.
        items_processed: Rows written per entity type.
        fatal: Whether the run aborted before or during persistence.

    Returns:
        FAILED on a fatal error, SUCCESS with zero errors, PARTIAL_SUCCESS
        when rows were written despite errors, FAILED otherwise.
    """
    if fatal:
        return SyncStatus.FAILED
    if error_count == 0:
        return SyncStatus.SUCCESS
    if sum((items_processed or {}).values()) > 0:
        return SyncStatus.PARTIAL_SUCCESS
    return SyncStatus.FAILED


def peak_memory_mb() -> float:
    """Peak resident set size of this process in megabytes."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is reported in bytes on macOS and kilobytes elsewhere
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(usage / divisor, 2)


class SyncHealthTracker:
    """Tracks one sync run and keeps its sync_health row current.

    The row is inserted by ``begin``. Errors are collected in memory by
    ``record_error`` and written to the row whenever the run moves to a new
    phase and again by ``finish``. Writing is best effort: a database
    problem while tracking is logged and never breaks the run itself.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sync_type: SyncType = SyncType.MANUAL,
        api_url: str | None = None,
        alert_sender: Callable[[dict[str, Any]], Awaitable[bool]] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.sync_type = SyncType(sync_type)
        self.api_url = api_url
        self.alert_sender = alert_sender or send_sync_alert

        self.sync_id: int | None = None
        self.phase = SyncPhase.CREATED
        self.status = SyncStatus.IN_PROGRESS
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float | None = None
        self.request_size_bytes: int | None = None
        self.items_processed: dict[str, int] = {}
        self.errors: list[SyncErrorEntry] = []
        self.error_count = 0
        self.memory_usage_mb: float | None = None
        self.finished = False

    async def begin(self) -> int | None:
        """Start tracking: insert the in_progress row.

        Returns:
            The sync id, or None if the row could not be written.
        """
        self.start_time = datetime.now(UTC)
        try:
            async with self.session_factory() as session:
                record = SyncHealth(
                    sync_type=self.sync_type.value,
                    status=SyncStatus.IN_PROGRESS.value,
                    start_time=self.start_time,
                    api_url=self.api_url,
                    items_processed={},
                    error_count=0,
                    errors=[],
                )
                session.add(record)
                await session.commit()
                self.sync_id = record.id
        except SQLAlchemyError as e:
            logger.error("Could not create sync_health record: %s", e)

        logger.info(
            "Sync %s started (type=%s, source=%s)", self.sync_id, self.sync_type.value, self.api_url
        )
        return self.sync_id

    def record_error(
        self,
        error_type: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record an error for this run. Never raises."""
        if self.finished:
            logger.warning(
                "Sync %s already finished, error not recorded: %s", self.sync_id, message
            )
            return
        self.error_count += 1
        if len(self.errors) < MAX_STORED_ERRORS:
            self.errors.append(
                SyncErrorEntry(type=error_type, message=message, context=context or {})
            )
        logger.error("Sync %s %s error: %s", self.sync_id, error_type, message)

    def update_items_processed(self, items_processed: dict[str, int]) -> None:
        """Replace the per-entity item counts."""
        if not self.finished:
            self.items_processed = dict(items_processed)

    async def advance(self, phase: SyncPhase) -> None:
        """Move the run to a later phase and flush the record.

        Raises:
            ValueError: If the phase is earlier than the current one.
        """
        if PHASE_ORDER[phase] < PHASE_ORDER[self.phase]:
            raise ValueError(f"Cannot move sync from {self.phase.value} back to {phase.value}")
        self.phase = phase
        logger.info("Sync %s phase: %s", self.sync_id, phase.value)
        await self.flush()

    async def flush(self) -> None:
        """Write the current error and item state to the row (best effort)."""
        if self.sync_id is None:
            return
        try:
            async with self.session_factory() as session:
                record = await session.get(SyncHealth, self.sync_id)
                if record is None:
                    return
                self._apply(record)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Could not update sync_health record %s: %s", self.sync_id, e)

    def _apply(self, record: SyncHealth) -> None:
        record.status = self.status.value
        record.end_time = self.end_time
        record.duration_seconds = self.duration_seconds
        record.request_size_bytes = self.request_size_bytes
        record.items_processed = dict(self.items_processed)
        record.error_count = self.error_count
        record.errors = [asdict(error) for error in self.errors]
        record.memory_usage_mb = self.memory_usage_mb

    async def finish(
        self,
        status: SyncStatus,
        bytes_processed: int | None = None,
        items_processed: dict[str, int] | None = None,
    ) -> dict[str, Any]:
        """Finalize the run, persist its outcome and alert when degraded.

        Args:
            status: Final status of the run.
            bytes_processed: Size of the catalog document, when fetched.
            items_processed: Rows written per entity type.

        Returns:
            Summary of the run (see ``to_dict``).
        """
        if self.finished:
            return self.to_dict()

        status = SyncStatus(status)
        if items_processed is not None:
            self.items_processed = dict(items_processed)
        if bytes_processed is not None:
            self.request_size_bytes = bytes_processed

        self.end_time = datetime.now(UTC)
        start = self.start_time or self.end_time
        self.duration_seconds = round((self.end_time - start).total_seconds(), 3)
        self.memory_usage_mb = peak_memory_mb()
        self.status = status
        self.phase = SyncPhase(status.value)
        self.finished = True

        if self.sync_id is None:
            await self._insert_final()
        else:
            await self.flush()

        logger.info(
            "Sync %s finished: status=%s duration=%.2fs errors=%d items=%s",
            self.sync_id,
            status.value,
            self.duration_seconds,
            self.error_count,
            self.items_processed,
        )

        summary = self.to_dict()
        if status != SyncStatus.SUCCESS:
            await self._alert(summary)
        return summary

    async def _insert_final(self) -> None:
        try:
            async with self.session_factory() as session:
                record = SyncHealth(
                    sync_type=self.sync_type.value,
                    start_time=self.start_time or self.end_time,
                    api_url=self.api_url,
                )
                self._apply(record)
                session.add(record)
                await session.commit()
                self.sync_id = record.id
        except SQLAlchemyError as e:
            logger.error("Could not write final sync_health record: %s", e)

    async def _alert(self, summary: dict[str, Any]) -> None:
        try:
            await self.alert_sender(summary)
        except Exception:
            logger.exception("Sync alert for sync %s could not be sent", self.sync_id)

    def to_dict(self) -> dict[str, Any]:
        """Summary of the run for API responses and alerts."""
        return {
            "id": self.sync_id,
            "sync_type": self.sync_type.value,
            "status": self.status.value,
            "phase": self.phase.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "api_url": self.api_url,
            "request_size_bytes": self.request_size_bytes,
            "items_processed": dict(self.items_processed),
            "error_count": self.error_count,
            "errors": [asdict(error) for error in self.errors],
            "memory_usage_mb": self.memory_usage_mb,
        }


def serialize_sync_health(record: SyncHealth) -> dict[str, Any]:
    """Convert a sync_health row into a JSON-friendly dictionary."""
    return {
        "id": record.id,
        "sync_type": record.sync_type,
        "status": record.status,
        "start_time": record.start_time.isoformat() if record.start_time else None,
        "end_time": record.end_time.isoformat() if record.end_time else None,
        "duration_seconds": record.duration_seconds,
        "api_url": record.api_url,
        "request_size_bytes": record.request_size_bytes,
        "items_processed": record.items_processed or {},
        "error_count": record.error_count,
        "errors": record.errors or [],
        "memory_usage_mb": record.memory_usage_mb,
    }


@dataclass(frozen=True)
class SyncHealthStats:
    """Aggregate statistics over sync runs in a time window.

    Attributes:
        start_date: Window start (inclusive)
        end_date: Window end (inclusive)
        total_syncs: Number of runs started in the window
        success_rate: Percentage of runs with status 'success'
        average_duration_seconds: Mean duration of finished runs
        total_errors: Sum of recorded errors
        items_processed: Rows written per entity type, summed
        syncs_by_status: Run count per status
    """

    start_date: datetime
    end_date: datetime
    total_syncs: int
    success_rate: float
    average_duration_seconds: float | None
    total_errors: int
    items_processed: dict[str, int]
    syncs_by_status: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for API responses."""
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_syncs": self.total_syncs,
            "success_rate": self.success_rate,
            "average_duration_seconds": self.average_duration_seconds,
            "total_errors": self.total_errors,
            "items_processed": self.items_processed,
            "syncs_by_status": self.syncs_by_status,
        }


async def get_recent_sync_health(
    session: AsyncSession,
    limit: int = 10,
    offset: int = 0,
) -> list[SyncHealth]:
    """Get the most recent sync runs.

    Args:
        session: Database session
        limit: Maximum number of results (default 10)
        offset: Number of results to skip (for pagination)

    Returns:
        SyncHealth rows ordered by start_time, newest first
    """
    query = (
        select(SyncHealth)
        .order_by(desc(SyncHealth.start_time), desc(SyncHealth.id))
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_sync_health_stats(
    session: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> SyncHealthStats:
    """Get aggregate statistics for sync runs in a time window.

    Args:
        session: Database session
        start_date: Window start (default: 7 days before end_date)
        end_date: Window end (default: now)

    Returns:
        SyncHealthStats for the window
    """
    end_date = end_date or datetime.now(UTC)
    start_date = start_date or end_date - DEFAULT_STATS_WINDOW
    window = (SyncHealth.start_time >= start_date, SyncHealth.start_time <= end_date)

    totals_query = select(
        func.count(SyncHealth.id),
        func.avg(SyncHealth.duration_seconds),
        func.sum(SyncHealth.error_count),
    ).where(*window)
    totals = (await session.execute(totals_query)).one()
    total_syncs = totals[0] or 0
    average_duration = round(float(totals[1]), 3) if totals[1] is not None else None
    total_errors = int(totals[2] or 0)

    status_query = (
        select(SyncHealth.status, func.count(SyncHealth.id))
        .where(*window)
        .group_by(SyncHealth.status)
    )
    status_result = await session.execute(status_query)
    syncs_by_status = {row[0]: row[1] for row in status_result}

    # items_processed is a JSON map, summed in Python for portability
    items_query = select(SyncHealth.items_processed).where(*window)
    items_processed: dict[str, int] = {}
    for items in (await session.execute(items_query)).scalars():
        for entity, count in (items or {}).items():
            items_processed[entity] = items_processed.get(entity, 0) + int(count or 0)

    successes = syncs_by_status.get(SyncStatus.SUCCESS.value, 0)
    success_rate = round(successes / total_syncs * 100, 2) if total_syncs else 0.0

    return SyncHealthStats(
        start_date=start_date,
        end_date=end_date,
        total_syncs=total_syncs,
        success_rate=success_rate,
        average_duration_seconds=average_duration,
        total_errors=total_errors,
        items_processed=items_processed,
        syncs_by_status=syncs_by_status,
    )
