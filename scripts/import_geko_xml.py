"""Import a GEKO catalog XML file or feed URL into the database.

Runs the same pipeline as the scheduled sync and records the run in
sync_health.

Usage:
    python scripts/import_geko_xml.py catalog.xml
    python scripts/import_geko_xml.py https://api.geko.com/products --incremental
    python scripts/import_geko_xml.py catalog.xml --limit 100

Environment variables:
    DATABASE_URL: Target database (see catalog_sync.config)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from catalog_sync.database import create_engine, create_session_factory
from catalog_sync.services.persister import PersistMode
from catalog_sync.services.pipeline import SyncRunResult, run_catalog_sync
from catalog_sync.services.sync_health import SyncType


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Import a GEKO catalog XML document")
    parser.add_argument("source", help="Path to an XML file or an http(s) feed URL")
    parser.add_argument(
        "--incremental",
        action="store_true",
        help="Only write new or changed products",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Only import the first N products",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per write batch (default from settings)",
    )
    return parser.parse_args(argv)


async def run_import(args: argparse.Namespace) -> SyncRunResult:
    """Run the pipeline for a file or URL source."""
    engine = create_engine()
    try:
        options = {
            "sync_type": SyncType.INCREMENTAL if args.incremental else SyncType.MANUAL,
            "mode": PersistMode.INCREMENTAL if args.incremental else PersistMode.FULL,
            "session_factory": create_session_factory(engine),
            "limit": args.limit,
            "batch_size": args.batch_size,
        }
        if args.source.startswith(("http://", "https://")):
            return await run_catalog_sync(args.source, **options)

        path = Path(args.source)
        return await run_catalog_sync(
            content=path.read_bytes(),
            source=f"file:{path.name}",
            **options,
        )
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the catalog importer.

    Returns:
        Exit code (0 for success or partial success, 1 for failure)
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args(argv)

    if not args.source.startswith(("http://", "https://")) and not Path(args.source).is_file():
        print(f"Error: file not found: {args.source}")
        return 1
    if args.limit is not None and args.limit < 1:
        print("Error: --limit must be a positive number")
        return 1

    result = asyncio.run(run_import(args))

    print(f"\nSync {result.sync_id}: {result.status.value}")
    if result.duration_seconds is not None:
        print(f"Duration: {result.duration_seconds:.2f}s")
    print(f"Errors: {result.error_count}")
    for entity, count in result.items_processed.items():
        print(f"  {entity}: {count}")
    if result.error is not None:
        print(f"Error: {result.error}")

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
