"""End-to-end catalog sync: fetch, parse, transform, persist, track."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import settings
from catalog_sync.database import async_session_factory
from catalog_sync.services.geko_client import FetchError, FetchResult, fetch_catalog
from catalog_sync.services.persister import (
    PersistMode,
    PersistStats,
    TransactionError,
    persist_with_retry,
)
from catalog_sync.services.sync_health import (
    SyncHealthTracker,
    SyncPhase,
    SyncStatus,
    SyncType,
    determine_status,
)
from catalog_sync.services.transformer import transform_catalog
from catalog_sync.services.xml_parser import ParseError, parse_xml

logger = logging.getLogger(__name__)

# Errors that abort a run; anything else is a bug and propagates directly
FATAL_ERRORS: dict[type[Exception], str] = {
    FetchError: "fetch",
    ParseError: "parse",
    TransactionError: "transaction",
}

Fetcher = Callable[[str], Awaitable[FetchResult]]


@dataclass
class SyncRunResult:
    """Outcome of one pipeline run.

    Attributes:
        sync_id: Id of the sync_health row, when it could be written
        status: Final status of the run
        duration_seconds: Wall-clock duration
        items_processed: Rows written per entity type
        error_count: Errors recorded on the tracker
        persist_stats: Detailed write counters, when persistence ran
        error: The exception that aborted the run, if any
        summary: Full tracker summary
    """

    sync_id: int | None
    status: SyncStatus
    duration_seconds: float | None
    items_processed: dict[str, int] = field(default_factory=dict)
    error_count: int = 0
    persist_stats: PersistStats | None = None
    error: Exception | None = None
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """True unless the run failed."""
        return self.status != SyncStatus.FAILED

    def raise_for_error(self) -> None:
        """Re-raise the exception that aborted the run, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for API responses."""
        return {
            "sync_id": self.sync_id,
            "status": self.status.value,
            "duration_seconds": self.duration_seconds,
            "items_processed": self.items_processed,
            "error_count": self.error_count,
            "stats": self.persist_stats.to_dict() if self.persist_stats else None,
            "error": str(self.error) if self.error else None,
        }


async def _default_fetcher(url: str) -> FetchResult:
    return await fetch_catalog(url)


async def run_catalog_sync(
    api_url: str | None = None,
    *,
    content: str | bytes | None = None,
    source: str | None = None,
    sync_type: SyncType = SyncType.MANUAL,
    mode: PersistMode = PersistMode.FULL,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    fetcher: Fetcher | None = None,
    limit: int | None = None,
    batch_size: int | None = None,
    alert_sender: Callable[[dict[str, Any]], Awaitable[bool]] | None = None,
) -> SyncRunResult:
    """Run one catalog sync end to end.

    The catalog is fetched from ``api_url`` unless ``content`` is given
    (uploads, local files). Every phase is reported to a
    ``SyncHealthTracker``. Fetch, parse and transaction failures abort the
    run; they are recorded, the run is finalized as failed and the error is
    returned on the result rather than raised.

    Args:
        api_url: Catalog feed URL (defaults to settings).
        content: Catalog XML to use instead of fetching.
        source: Source label stored on the sync record (defaults to the URL).
        sync_type: What triggered the run.
        mode: Full or incremental product writes.
        session_factory: Database session factory (defaults to the app's).
        fetcher: Coroutine downloading the catalog (defaults to GekoClient).
        limit: Only process the first ``limit`` products.
        batch_size: Rows per write batch (defaults to settings).
        alert_sender: Alert coroutine passed to the tracker.

    Returns:
        SyncRunResult describing the outcome.
    """
    session_factory = session_factory or async_session_factory
    url = api_url or settings.geko_api_url
    tracker = SyncHealthTracker(
        session_factory,
        sync_type=sync_type,
        api_url=source or url,
        alert_sender=alert_sender,
    )
    await tracker.begin()

    bytes_processed: int | None = None
    stats: PersistStats | None = None
    error: Exception | None = None

    try:
        if content is None:
            await tracker.advance(SyncPhase.FETCHING)
            fetched = await (fetcher or _default_fetcher)(url)
            content = fetched.content
            bytes_processed = fetched.size_bytes
        else:
            raw = content.encode("utf-8") if isinstance(content, str) else content
            bytes_processed = len(raw)

        await tracker.advance(SyncPhase.PARSING)
        catalog = parse_xml(content)
        if limit is not None:
            catalog.products = catalog.products[:limit]

        await tracker.advance(SyncPhase.TRANSFORMING)
        batch = transform_catalog(catalog)
        for issue in batch.issues:
            if issue.severity == "error":
                tracker.record_error("validation", issue.message, issue.to_dict())

        await tracker.advance(SyncPhase.PERSISTING)
        stats = await persist_with_retry(
            session_factory,
            batch,
            mode=mode,
            tracker=tracker,
            batch_size=batch_size,
        )
        tracker.update_items_processed(stats.items_processed)
        await tracker.advance(SyncPhase.FINALIZING)
    except tuple(FATAL_ERRORS) as e:
        error = e
        error_type = next(name for cls, name in FATAL_ERRORS.items() if isinstance(e, cls))
        tracker.record_error(error_type, str(e), {"phase": tracker.phase.value})
    except Exception as e:
        tracker.record_error("unexpected", str(e), {"phase": tracker.phase.value})
        await tracker.finish(SyncStatus.FAILED, bytes_processed)
        raise

    items = stats.items_processed if stats else {}
    status = determine_status(tracker.error_count, items, fatal=error is not None)
    summary = await tracker.finish(status, bytes_processed, items)

    return SyncRunResult(
        sync_id=tracker.sync_id,
        status=status,
        duration_seconds=tracker.duration_seconds,
        items_processed=items,
        error_count=tracker.error_count,
        persist_stats=stats,
        error=error,
        summary=summary,
    )


async def run_scheduled_sync(api_url: str) -> SyncRunResult:
    """Scheduler job: a full sync tagged as scheduled."""
    return await run_catalog_sync(api_url, sync_type=SyncType.SCHEDULED)
