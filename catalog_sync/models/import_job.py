"""ImportJob model for uploaded catalog files imported in the background."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class ImportJob(Base):
    """One uploaded catalog file queued for import by a Celery worker.

    The upload is stored on disk under ``file_path`` until the worker has
    processed it. A job moves from ``pending`` to ``processing`` when a
    worker claims it and ends as ``completed``, ``failed`` or ``cancelled``.

    Attributes:
        id: Job id (UUID string) returned to the uploader
        status: 'pending', 'processing', 'completed', 'failed' or 'cancelled'
        filename: Original name of the uploaded file
        file_path: Where the upload is stored until it is imported
        file_size: Upload size in bytes
        incremental: Whether unchanged products are skipped
        sync_id: The sync_health run created by the import
        result: Run outcome (status, counts, errors)
        error: Why the job failed
        created_at: When the upload was accepted
        started_at: When a worker claimed the job
        completed_at: When the job reached a final status
    """

    __tablename__ = "import_jobs"
    __table_args__ = (
        Index("ix_import_jobs_status", "status"),
        Index("ix_import_jobs_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
    )
    filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    file_path: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
    )
    file_size: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    incremental: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    sync_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("sync_health.id", ondelete="SET NULL"),
        nullable=True,
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
    )
    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<ImportJob(id={self.id!r}, status={self.status!r})>"
