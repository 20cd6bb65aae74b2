"""SyncHealth model for the audit trail of catalog sync runs."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class SyncHealth(Base):
    """One row per catalog sync run.

    The row is inserted when a run begins (status ``in_progress``), updated
    while the run progresses and finalized when it ends.

    Attributes:
        id: Surrogate identifier (the run id)
        sync_type: 'scheduled', 'manual' or 'incremental'
        status: 'in_progress', 'success', 'partial_success' or 'failed'
        start_time: When the run began
        end_time: When the run finished
        duration_seconds: Wall-clock duration of the run
        api_url: Catalog source (feed URL or upload name)
        request_size_bytes: Size of the fetched XML document
        items_processed: Map of entity name to rows written
        error_count: Number of recorded errors
        errors: Ordered list of {type, message, context, timestamp}
        memory_usage_mb: Peak resident memory of the process
    """

    __tablename__ = "sync_health"
    __table_args__ = (
        Index("ix_sync_health_start_time", "start_time"),
        Index("ix_sync_health_status", "status"),
        Index("ix_sync_health_sync_type", "sync_type"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    sync_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="in_progress",
    )
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    duration_seconds: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    api_url: Mapped[str | None] = mapped_column(
        String(1024),
        nullable=True,
    )
    request_size_bytes: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    items_processed: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    error_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    errors: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    memory_usage_mb: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<SyncHealth(id={self.id!r}, status={self.status!r})>"
