"""Persist transformed catalog batches to the database.

Entities are written in foreign-key order (categories, producers, units,
products, variants, stocks, prices, images) as natural-key upserts, in
fixed-size batches. Every batch runs in its own SAVEPOINT: a batch that
violates a constraint is rolled back on its own, recorded as a
``PersistenceError`` and the run carries on. Nothing is ever deleted.

Failures of the surrounding transaction itself (connect, begin, commit,
schema problems) abort the attempt; ``persist_with_retry`` retries those
with exponential backoff and raises ``TransactionError`` when it gives up.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import settings
from catalog_sync.database import Base
from catalog_sync.models import (
    Category,
    Image,
    Price,
    Producer,
    Product,
    Stock,
    Unit,
    Variant,
)
from catalog_sync.services.transformer import CatalogBatch, CategoryRecord

if TYPE_CHECKING:
    from catalog_sync.services.sync_health import SyncHealthTracker

logger = logging.getLogger(__name__)

ENTITY_ORDER = (
    "categories",
    "producers",
    "units",
    "products",
    "variants",
    "stocks",
    "prices",
    "images",
)

# Constraint violations confined to the rows of one batch
BATCH_ERRORS = (IntegrityError, DataError)

PRODUCT_COMPARE_COLUMNS = (
    "name",
    "description_short",
    "description_long",
    "ean",
    "producer_code",
    "category_id",
    "producer_id",
    "unit_id",
    "vat",
    "url",
)


class PersistMode(str, Enum):
    """How products are written."""

    FULL = "full"
    INCREMENTAL = "incremental"


class PersistenceError(Exception):
    """A single batch that could not be written."""

    def __init__(self, entity: str, batch_index: int, row_count: int, message: str) -> None:
        self.entity = entity
        self.batch_index = batch_index
        self.row_count = row_count
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for error reporting."""
        return {
            "entity": self.entity,
            "batch": self.batch_index,
            "rows": self.row_count,
            "message": str(self),
        }


class TransactionError(Exception):
    """The persistence transaction failed on every attempt."""

    pass


@dataclass
class EntityStats:
    """Write counters for one entity type."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def written(self) -> int:
        """Rows successfully inserted or updated."""
        return self.inserted + self.updated


@dataclass
class PersistStats:
    """Outcome of persisting one catalog batch."""

    mode: PersistMode = PersistMode.FULL
    entities: dict[str, EntityStats] = field(
        default_factory=lambda: {name: EntityStats() for name in ENTITY_ORDER}
    )
    errors: list[PersistenceError] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def items_processed(self) -> dict[str, int]:
        """Rows written per entity type."""
        return {name: stats.written for name, stats in self.entities.items()}

    @property
    def total_written(self) -> int:
        """Rows written across all entity types."""
        return sum(self.items_processed.values())

    @property
    def failed_batches(self) -> int:
        """Number of batches rolled back."""
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for API responses."""
        return {
            "mode": self.mode.value,
            "entities": {name: asdict(stats) for name, stats in self.entities.items()},
            "items_processed": self.items_processed,
            "failed_batches": self.failed_batches,
            "notes": list(self.notes),
        }


def chunked(rows: Sequence[Any], size: int) -> list[Sequence[Any]]:
    """Split rows into consecutive chunks of at most ``size``."""
    return [rows[i : i + size] for i in range(0, len(rows), size)]


def order_categories(
    categories: list[CategoryRecord],
) -> tuple[list[CategoryRecord], list[str]]:
    """Order categories so every parent precedes its children.

    Cycles are broken by detaching the category that closes the loop from
    its parent.

    Args:
        categories: Category records, in any order.

    Returns:
        Tuple of (ordered records, notes about broken cycles).
    """
    by_id = {c.id: c for c in categories}
    placed: set[str] = set()
    ordered: list[CategoryRecord] = []
    notes: list[str] = []

    for category in categories:
        chain: list[CategoryRecord] = []
        on_chain: set[str] = set()
        node: CategoryRecord | None = category
        while node is not None and node.id not in placed:
            if node.id in on_chain:
                last = chain[-1]
                notes.append(f"Category cycle broken at {last.id!r} (parent {last.parent_id!r})")
                last.parent_id = None
                break
            chain.append(node)
            on_chain.add(node.id)
            node = by_id.get(node.parent_id) if node.parent_id else None

        for item in reversed(chain):
            placed.add(item.id)
            ordered.append(item)

    return ordered, notes


class CatalogPersister:
    """Writes one CatalogBatch inside the caller's transaction.

    The persister keeps the natural-key to id maps of the current run
    (producer name, product code, variant code) and is discarded afterwards.
    """

    def __init__(
        self,
        session: AsyncSession,
        batch_size: int | None = None,
        mode: PersistMode = PersistMode.FULL,
    ) -> None:
        self.session = session
        self.batch_size = batch_size or settings.sync_batch_size
        self.mode = mode
        self.stats = PersistStats(mode=mode)
        self.written_categories: set[str] = set()
        self.failed_categories: set[str] = set()
        self.written_units: set[str] = set()
        self.failed_units: set[str] = set()
        self.producer_ids: dict[str, int] = {}
        self.product_ids: dict[str, int] = {}
        self.variant_ids: dict[str, int] = {}

    @property
    def dialect(self) -> str:
        return self.session.bind.dialect.name

    def _insert(self, model: type[Base]) -> Any:
        if self.dialect == "postgresql":
            return postgresql.insert(model)
        if self.dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"Upsert is not supported on {self.dialect!r}")

    async def _upsert(
        self,
        model: type[Base],
        rows: Sequence[dict[str, Any]],
        conflict_keys: list[str],
        returning: tuple[Any, ...] = (),
    ) -> list[Any]:
        """INSERT ... ON CONFLICT DO UPDATE on the natural key."""
        stmt = self._insert(model).values(list(rows))
        update_columns = [c for c in rows[0] if c not in conflict_keys]
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict_keys,
                set_={c: stmt.excluded[c] for c in update_columns},
            )
        else:
            # Key-only rows (producers): a no-op update still returns the id
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict_keys,
                set_={c: stmt.excluded[c] for c in conflict_keys},
            )
        if returning:
            stmt = stmt.returning(*returning)
            result = await self.session.execute(stmt)
            return list(result.all())
        await self.session.execute(stmt)
        return []

    async def _existing(self, column: Any, keys: Sequence[Any]) -> set[Any]:
        result = await self.session.execute(select(column).where(column.in_(list(keys))))
        return set(result.scalars().all())

    async def _write_batches(
        self,
        entity: str,
        rows: Sequence[dict[str, Any]],
        write: Callable[[Sequence[dict[str, Any]]], Awaitable[None]],
    ) -> None:
        """Write rows batch by batch, each inside a SAVEPOINT."""
        stats = self.stats.entities[entity]
        for index, chunk in enumerate(chunked(rows, self.batch_size)):
            try:
                async with self.session.begin_nested():
                    await write(chunk)
            except BATCH_ERRORS as e:
                stats.failed += len(chunk)
                error = PersistenceError(entity, index, len(chunk), str(e.orig or e))
                self.stats.errors.append(error)
                logger.error(
                    "Failed to write %s batch %d (%d rows): %s",
                    entity,
                    index,
                    len(chunk),
                    error,
                )

    async def persist(self, batch: CatalogBatch) -> PersistStats:
        """Write every entity of the batch in dependency order.

        Args:
            batch: Transformed catalog records.

        Returns:
            PersistStats with per-entity counters and failed batches.

        Raises:
            SQLAlchemyError: For failures that are not confined to one batch.
        """
        await self._persist_categories(batch.categories)
        await self._persist_producers(batch)
        await self._persist_units(batch)
        await self._persist_products(batch)
        await self._persist_variants(batch)
        await self._persist_stocks(batch)
        await self._persist_prices(batch)
        await self._persist_images(batch)

        logger.info(
            "Persisted catalog (%s mode): %s, %d failed batches",
            self.mode.value,
            self.stats.items_processed,
            self.stats.failed_batches,
        )
        return self.stats

    async def _persist_categories(self, categories: list[CategoryRecord]) -> None:
        ordered, notes = order_categories([CategoryRecord(**asdict(c)) for c in categories])
        for note in notes:
            logger.warning(note)
        self.stats.notes.extend(notes)

        batch_ids = {c.id for c in ordered}
        outside = {c.parent_id for c in ordered if c.parent_id and c.parent_id not in batch_ids}
        if outside:
            known = await self._existing_in_chunks(Category.id, sorted(outside))
            for category in ordered:
                if category.parent_id in outside and category.parent_id not in known:
                    logger.warning(
                        "Category %s: unknown parent %s, stored as top level",
                        category.id,
                        category.parent_id,
                    )
                    category.parent_id = None

        rows = [asdict(c) for c in ordered]
        if not rows:
            return
        existing = await self._existing_in_chunks(Category.id, sorted(batch_ids))
        stats = self.stats.entities["categories"]

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            ids = [r["id"] for r in chunk]
            # Children of a rolled-back level would break the foreign key
            cleaned = []
            for row in chunk:
                if row["parent_id"] in self.failed_categories:
                    row = {**row, "parent_id": None}
                cleaned.append(row)
            try:
                await self._upsert(Category, cleaned, ["id"])
            except BATCH_ERRORS:
                self.failed_categories.update(ids)
                raise
            self.written_categories.update(ids)
            for category_id in ids:
                if category_id in existing:
                    stats.updated += 1
                else:
                    stats.inserted += 1

        await self._write_batches("categories", rows, write)

    async def _persist_producers(self, batch: CatalogBatch) -> None:
        rows = list({p.name: {"name": p.name} for p in batch.producers}.values())
        if not rows:
            return
        existing = await self._existing_in_chunks(Producer.name, [r["name"] for r in rows])
        stats = self.stats.entities["producers"]

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            returned = await self._upsert(
                Producer, chunk, ["name"], returning=(Producer.id, Producer.name)
            )
            for producer_id, name in returned:
                self.producer_ids[name] = producer_id
                if name in existing:
                    stats.updated += 1
                else:
                    stats.inserted += 1

        await self._write_batches("producers", rows, write)

    async def _persist_units(self, batch: CatalogBatch) -> None:
        rows = list({u.id: asdict(u) for u in batch.units}.values())
        if not rows:
            return
        existing = await self._existing_in_chunks(Unit.id, [r["id"] for r in rows])
        stats = self.stats.entities["units"]

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            ids = [r["id"] for r in chunk]
            try:
                await self._upsert(Unit, chunk, ["id"])
            except BATCH_ERRORS:
                self.failed_units.update(ids)
                raise
            self.written_units.update(ids)
            stats.updated += sum(1 for i in ids if i in existing)
            stats.inserted += sum(1 for i in ids if i not in existing)

        await self._write_batches("units", rows, write)

    def _product_row(self, record: Any, now: datetime) -> dict[str, Any]:
        row = asdict(record)
        producer_name = row.pop("producer_name")
        row["producer_id"] = self.producer_ids.get(producer_name) if producer_name else None
        if producer_name and row["producer_id"] is None:
            logger.warning("Product %s: producer %r was not stored", record.code, producer_name)
        if row["category_id"] in self.failed_categories:
            row["category_id"] = None
        if row["unit_id"] in self.failed_units:
            row["unit_id"] = None
        row["updated_at"] = now
        return row

    async def _persist_products(self, batch: CatalogBatch) -> None:
        now = datetime.now(UTC)
        rows = list({p.code: self._product_row(p, now) for p in batch.products}.values())
        if not rows:
            return
        stats = self.stats.entities["products"]

        columns = [getattr(Product, c) for c in PRODUCT_COMPARE_COLUMNS]
        existing: dict[str, dict[str, Any]] = {}
        for chunk in chunked([r["code"] for r in rows], self.batch_size):
            result = await self.session.execute(
                select(Product.code, Product.id, *columns).where(Product.code.in_(list(chunk)))
            )
            for item in result.mappings():
                existing[item["code"]] = dict(item)

        if self.mode == PersistMode.INCREMENTAL:
            changed = []
            for row in rows:
                stored = existing.get(row["code"])
                if stored is not None and all(
                    stored[c] == row[c] for c in PRODUCT_COMPARE_COLUMNS
                ):
                    self.product_ids[row["code"]] = stored["id"]
                    stats.skipped += 1
                else:
                    changed.append(row)
            logger.info(
                "Incremental mode: %d of %d products new or changed", len(changed), len(rows)
            )
            rows = changed

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            returned = await self._upsert(
                Product, chunk, ["code"], returning=(Product.id, Product.code)
            )
            for product_id, code in returned:
                self.product_ids[code] = product_id
                if code in existing:
                    stats.updated += 1
                else:
                    stats.inserted += 1

        await self._write_batches("products", rows, write)

    async def _persist_variants(self, batch: CatalogBatch) -> None:
        stats = self.stats.entities["variants"]
        rows = []
        for variant in batch.variants:
            product_id = self.product_ids.get(variant.product_code)
            if product_id is None:
                stats.skipped += 1
                continue
            row = asdict(variant)
            del row["product_code"]
            row["product_id"] = product_id
            rows.append(row)
        if not rows:
            return
        existing = await self._existing_in_chunks(Variant.code, [r["code"] for r in rows])

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            returned = await self._upsert(
                Variant, chunk, ["code"], returning=(Variant.id, Variant.code)
            )
            for variant_id, code in returned:
                self.variant_ids[code] = variant_id
                if code in existing:
                    stats.updated += 1
                else:
                    stats.inserted += 1

        await self._write_batches("variants", rows, write)

    def _variant_rows(self, entity: str, records: Sequence[Any]) -> list[dict[str, Any]]:
        """Resolve variant_code to variant_id; unresolved rows are skipped."""
        stats = self.stats.entities[entity]
        rows: dict[int, dict[str, Any]] = {}
        for record in records:
            variant_id = self.variant_ids.get(record.variant_code)
            if variant_id is None:
                stats.skipped += 1
                continue
            row = asdict(record)
            del row["variant_code"]
            row["variant_id"] = variant_id
            rows[variant_id] = row
        return list(rows.values())

    async def _persist_by_variant(
        self, entity: str, model: type[Base], records: Sequence[Any]
    ) -> None:
        rows = self._variant_rows(entity, records)
        if not rows:
            return
        keys = [r["variant_id"] for r in rows]
        existing = await self._existing_in_chunks(model.variant_id, keys)
        stats = self.stats.entities[entity]

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            await self._upsert(model, chunk, ["variant_id"])
            stats.updated += sum(1 for r in chunk if r["variant_id"] in existing)
            stats.inserted += sum(1 for r in chunk if r["variant_id"] not in existing)

        await self._write_batches(entity, rows, write)

    async def _persist_stocks(self, batch: CatalogBatch) -> None:
        await self._persist_by_variant("stocks", Stock, batch.stocks)

    async def _persist_prices(self, batch: CatalogBatch) -> None:
        await self._persist_by_variant("prices", Price, batch.prices)

    async def _persist_images(self, batch: CatalogBatch) -> None:
        stats = self.stats.entities["images"]
        rows: dict[tuple[int, str], dict[str, Any]] = {}
        for image in batch.images:
            product_id = self.product_ids.get(image.product_code)
            if product_id is None:
                stats.skipped += 1
                continue
            row = asdict(image)
            del row["product_code"]
            row["product_id"] = product_id
            rows[(product_id, image.url)] = row
        if not rows:
            return

        existing: set[tuple[int, str]] = set()
        product_ids = sorted({key[0] for key in rows})
        for chunk in chunked(product_ids, self.batch_size):
            result = await self.session.execute(
                select(Image.product_id, Image.url).where(Image.product_id.in_(list(chunk)))
            )
            existing.update((product_id, url) for product_id, url in result.all())

        async def write(chunk: Sequence[dict[str, Any]]) -> None:
            await self._upsert(Image, chunk, ["product_id", "url"])
            for row in chunk:
                if (row["product_id"], row["url"]) in existing:
                    stats.updated += 1
                else:
                    stats.inserted += 1

        await self._write_batches("images", list(rows.values()), write)

    async def _existing_in_chunks(self, column: Any, keys: Sequence[Any]) -> set[Any]:
        found: set[Any] = set()
        for chunk in chunked(keys, self.batch_size):
            found |= await self._existing(column, chunk)
        return found


async def persist_with_retry(
    session_factory: async_sessionmaker[AsyncSession],
    batch: CatalogBatch,
    mode: PersistMode = PersistMode.FULL,
    tracker: "SyncHealthTracker | None" = None,
    batch_size: int | None = None,
    max_retries: int | None = None,
    base_delay: float | None = None,
) -> PersistStats:
    """Persist a batch in one transaction, retrying transaction failures.

    Each attempt opens a fresh session and transaction. Batch-level
    failures do not trigger a retry; they are reported to the tracker once
    the transaction has committed.

    Args:
        session_factory: Factory for database sessions.
        batch: Transformed catalog records.
        mode: Full or incremental product writes.
        tracker: Optional sync health tracker receiving errors.
        batch_size: Rows per batch (defaults to settings).
        max_retries: Retries after the first attempt (defaults to settings).
        base_delay: Backoff base in seconds; attempt n waits base * 2**n.

    Returns:
        PersistStats of the committed attempt.

    Raises:
        TransactionError: If every attempt failed.
    """
    max_retries = settings.sync_max_retries if max_retries is None else max_retries
    base_delay = settings.sync_retry_base_delay if base_delay is None else base_delay
    last_error: SQLAlchemyError | None = None

    for attempt in range(max_retries + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    persister = CatalogPersister(session, batch_size=batch_size, mode=mode)
                    stats = await persister.persist(batch)
        except SQLAlchemyError as e:
            last_error = e
            logger.error(
                "Catalog transaction failed (attempt %d/%d): %s",
                attempt + 1,
                max_retries + 1,
                e,
            )
            if tracker is not None:
                tracker.record_error(
                    "transaction",
                    f"Transaction attempt {attempt + 1} failed: {e}",
                    {"attempt": attempt + 1},
                )
            if attempt < max_retries:
                wait_time = base_delay * 2**attempt
                logger.warning("Retrying catalog transaction in %.1f seconds", wait_time)
                await asyncio.sleep(wait_time)
            continue

        if tracker is not None:
            for note in stats.notes:
                tracker.record_error("validation", note, {"entity": "category"})
            for error in stats.errors:
                tracker.record_error("persistence", str(error), error.to_dict())
        return stats

    raise TransactionError(
        f"Catalog transaction failed after {max_retries + 1} attempts: {last_error}"
    ) from last_error
