"""Catalog ingestion services: fetch, parse, transform, persist and track."""

from catalog_sync.services.geko_client import FetchError, FetchResult, GekoClient, fetch_catalog
from catalog_sync.services.persister import (
    CatalogPersister,
    PersistenceError,
    PersistMode,
    PersistStats,
    TransactionError,
    persist_with_retry,
)
from catalog_sync.services.pipeline import SyncRunResult, run_catalog_sync, run_scheduled_sync
from catalog_sync.services.sync_health import (
    SyncHealthTracker,
    SyncPhase,
    SyncStatus,
    SyncType,
    determine_status,
)
from catalog_sync.services.transformer import CatalogBatch, transform_catalog
from catalog_sync.services.xml_parser import ParsedCatalog, ParseError, parse_xml

__all__ = [
    "CatalogBatch",
    "CatalogPersister",
    "FetchError",
    "FetchResult",
    "GekoClient",
    "ParseError",
    "ParsedCatalog",
    "PersistMode",
    "PersistStats",
    "PersistenceError",
    "SyncHealthTracker",
    "SyncPhase",
    "SyncRunResult",
    "SyncStatus",
    "SyncType",
    "TransactionError",
    "determine_status",
    "fetch_catalog",
    "parse_xml",
    "persist_with_retry",
    "run_catalog_sync",
    "run_scheduled_sync",
    "transform_catalog",
]
