"""Celery application configuration."""

from typing import Any

from celery import Celery

from catalog_sync.config import settings
from catalog_sync.services.scheduler import build_cron_schedule

# Create Celery app
celery_app = Celery(
    "catalog_sync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "catalog_sync.tasks.geko_sync",
        "catalog_sync.tasks.catalog_import",
    ],
)


def build_beat_schedule() -> dict[str, Any]:
    """Beat entries for deployments that run the sync from Celery beat.

    Off by default: the API process schedules the sync itself unless
    ``geko_sync_beat_enabled`` is set.
    """
    if not settings.geko_sync_beat_enabled:
        return {}
    _, schedule = build_cron_schedule(settings.geko_sync_interval_minutes)
    return {
        "sync-geko-catalog": {
            "task": "catalog_sync.tasks.geko_sync.sync_geko_catalog",
            "schedule": schedule,
            "kwargs": {"sync_type": "scheduled"},
            "options": {"queue": "default"},
        },
    }


# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Beat schedule for periodic tasks
    beat_schedule=build_beat_schedule(),
)
