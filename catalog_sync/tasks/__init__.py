"""Celery tasks for the catalog sync service."""
