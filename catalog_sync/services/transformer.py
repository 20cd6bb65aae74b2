"""Transform parsed GEKO product nodes into normalized catalog records.

The transformer owns all field validation. A bad field is nulled and a bad
row is dropped, each with a ``TransformIssue``; nothing here raises for a
single product. Deduplication maps live on a ``TransformContext`` created
per call, so repeated categories, producers and units collapse to one
record each.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from catalog_sync.services.validators import (
    ValidationError,
    check_url,
    clean_ean,
    extract_text,
    fit_identifier,
    normalize_number,
    parse_int,
    sanitize_html,
    segment_slug,
    slugify,
    to_bool,
)
from catalog_sync.services.xml_parser import TEXT_KEY, ParsedCatalog

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "pcs"
DEFAULT_CURRENCY = "EUR"
DEFAULT_VARIANT_SUFFIX = "DEFAULT"
PRICE_TYPES = ("retail", "wholesale")

# Column lengths of the catalog tables
MAX_PRODUCT_CODE_LENGTH = 100
MAX_VARIANT_CODE_LENGTH = 150
MAX_PRODUCT_NAME_LENGTH = 500
MAX_PRODUCER_CODE_LENGTH = 100
MAX_CATEGORY_ID_LENGTH = 255
MAX_CATEGORY_NAME_LENGTH = 255
MAX_CATEGORY_PATH_LENGTH = 1024
MAX_PRODUCER_NAME_LENGTH = 255
MAX_UNIT_ID_LENGTH = 50
MAX_UNIT_NAME_LENGTH = 100
MAX_URL_LENGTH = 1024


@dataclass
class TransformIssue:
    """A problem found while transforming one product.

    Attributes:
        entity: Entity type the issue belongs to (product, variant, ...)
        key: Natural key of the affected row, when known
        field: Affected field, or None for row-level issues
        message: Human-readable description
        severity: 'error' (counted) or 'warning' (informational)
    """

    entity: str
    key: str | None
    field: str | None
    message: str
    severity: str = "error"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for error reporting."""
        return {
            "entity": self.entity,
            "key": self.key,
            "field": self.field,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass
class CategoryRecord:
    id: str
    name: str
    path: str | None
    parent_id: str | None = None


@dataclass
class ProducerRecord:
    name: str


@dataclass
class UnitRecord:
    id: str
    name: str
    moq: int = 1


@dataclass
class ProductRecord:
    code: str
    name: str
    description_short: str | None = None
    description_long: str | None = None
    ean: str | None = None
    producer_code: str | None = None
    category_id: str | None = None
    producer_name: str | None = None
    unit_id: str | None = None
    vat: float | None = None
    url: str | None = None


@dataclass
class VariantRecord:
    code: str
    product_code: str
    ean: str | None = None
    weight: float | None = None
    gross_weight: float | None = None


@dataclass
class StockRecord:
    variant_code: str
    quantity: int = 0
    available: bool = False
    min_order_quantity: int = 1


@dataclass
class PriceRecord:
    """Merged retail and wholesale prices of one variant."""

    variant_code: str
    currency: str = DEFAULT_CURRENCY
    gross_price: float | None = None
    net_price: float | None = None
    srp_gross: float | None = None
    srp_net: float | None = None


@dataclass
class ImageRecord:
    product_code: str
    url: str
    is_main: bool = False
    order: int = 0


@dataclass
class CatalogBatch:
    """Normalized records ready for persistence, plus transform issues."""

    categories: list[CategoryRecord] = field(default_factory=list)
    producers: list[ProducerRecord] = field(default_factory=list)
    units: list[UnitRecord] = field(default_factory=list)
    products: list[ProductRecord] = field(default_factory=list)
    variants: list[VariantRecord] = field(default_factory=list)
    stocks: list[StockRecord] = field(default_factory=list)
    prices: list[PriceRecord] = field(default_factory=list)
    images: list[ImageRecord] = field(default_factory=list)
    issues: list[TransformIssue] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        """Number of issues with severity 'error'."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warning_count(self) -> int:
        """Number of issues with severity 'warning'."""
        return sum(1 for issue in self.issues if issue.severity == "warning")

    def counts(self) -> dict[str, int]:
        """Record counts per entity type."""
        return {
            "categories": len(self.categories),
            "producers": len(self.producers),
            "units": len(self.units),
            "products": len(self.products),
            "variants": len(self.variants),
            "stocks": len(self.stocks),
            "prices": len(self.prices),
            "images": len(self.images),
        }


@dataclass
class _ProductBundle:
    """All records derived from one product node."""

    product: ProductRecord
    categories: list[CategoryRecord] = field(default_factory=list)
    producer: ProducerRecord | None = None
    unit: UnitRecord | None = None
    variants: list[VariantRecord] = field(default_factory=list)
    stocks: list[StockRecord] = field(default_factory=list)
    prices: list[PriceRecord] = field(default_factory=list)
    images: list[ImageRecord] = field(default_factory=list)


class TransformContext:
    """Per-run deduplication maps and issue log."""

    def __init__(self) -> None:
        self.categories: dict[str, CategoryRecord] = {}
        self.producers: dict[str, ProducerRecord] = {}
        self.units: dict[str, UnitRecord] = {}
        self.product_codes: set[str] = set()
        self.variant_codes: set[str] = set()
        self.issues: list[TransformIssue] = []
        self.batch = CatalogBatch(issues=self.issues)

    def issue(
        self,
        entity: str,
        key: str | None,
        field_name: str | None,
        message: str,
        severity: str = "error",
    ) -> None:
        """Record a transform issue and log it as a warning."""
        self.issues.append(TransformIssue(entity, key, field_name, message, severity))
        logger.warning("%s %s: %s", entity, key or "?", message)

    def checked(
        self,
        entity: str,
        key: str | None,
        field_name: str,
        validator: Callable[..., Any],
        value: Any,
    ) -> Any:
        """Run a strict validator, nulling the field on ValidationError."""
        try:
            return validator(value)
        except ValidationError as e:
            self.issue(entity, key, field_name, str(e))
            return None

    def clipped(
        self,
        entity: str,
        key: str | None,
        field_name: str,
        value: str | None,
        limit: int,
    ) -> str | None:
        """Truncate a text field to its column length, with a warning."""
        if value is None or len(value) <= limit:
            return value
        message = f"Truncated from {len(value)} to {limit} characters"
        self.issue(entity, key, field_name, message, "warning")
        return value[:limit]

    def accept(self, bundle: _ProductBundle) -> None:
        """Merge one product's records into the batch, skipping duplicates."""
        code = bundle.product.code
        if code in self.product_codes:
            self.issue("product", code, "code", "Duplicate product code skipped", "warning")
            return
        self.product_codes.add(code)

        for category in bundle.categories:
            self.categories.setdefault(category.id, category)
        if bundle.producer is not None:
            self.producers.setdefault(bundle.producer.name, bundle.producer)
        if bundle.unit is not None:
            self.units.setdefault(bundle.unit.id, bundle.unit)

        self.batch.products.append(bundle.product)
        kept: set[str] = set()
        for variant in bundle.variants:
            if variant.code in self.variant_codes:
                self.issue(
                    "variant", variant.code, "code", "Duplicate variant code skipped", "warning"
                )
                continue
            self.variant_codes.add(variant.code)
            kept.add(variant.code)
            self.batch.variants.append(variant)

        self.batch.stocks.extend(s for s in bundle.stocks if s.variant_code in kept)
        self.batch.prices.extend(p for p in bundle.prices if p.variant_code in kept)
        self.batch.images.extend(bundle.images)

    def finish(self) -> CatalogBatch:
        """Materialize the deduplicated maps into the batch."""
        self.batch.categories = list(self.categories.values())
        self.batch.producers = list(self.producers.values())
        self.batch.units = list(self.units.values())
        return self.batch


def build_category_chain(node: Any) -> list[CategoryRecord]:
    """Build the category rows for a product's category node.

    With a path ("Tools/Power Tools/Drills") one row is produced per level,
    each pointing at the previous level. The id of a level is the slug of
    each segment up to that level joined by "_", so the same path always
    yields the same ids. Without a path the provided id, else the slug of
    the name (``name`` or its short form ``n``), is used.

    Ids longer than the column allows are shortened with a hash suffix;
    names and paths are truncated.

    Args:
        node: The product's ``category`` (or ``category_idosell``) node,
            a string or a mapping.

    Returns:
        Category rows from the top level down; the last one is the
        product's category. Empty when the node carries nothing usable.
    """
    if node is None or node == "":
        return []

    if isinstance(node, dict):
        path = extract_text(node.get("path"))
        provided_id = extract_text(node.get("id"))
        name = extract_text(node.get("name")) or extract_text(node.get("n")) or extract_text(node)
    else:
        path = extract_text(node)
        provided_id = None
        name = None

    segments = [s.strip() for s in (path or "").split("/") if s.strip()]
    if segments:
        chain: list[CategoryRecord] = []
        slugs: list[str] = []
        parent_id = None
        for depth, segment in enumerate(segments):
            slugs.append(segment_slug(segment))
            category_id = fit_identifier("_".join(slugs), MAX_CATEGORY_ID_LENGTH)
            chain.append(
                _category_record(
                    category_id, segment, "/".join(segments[: depth + 1]), parent_id
                )
            )
            parent_id = category_id
        return chain

    if provided_id:
        label = name or provided_id
        return [
            _category_record(fit_identifier(provided_id, MAX_CATEGORY_ID_LENGTH), label, label)
        ]
    if name:
        category_id = fit_identifier(slugify(name) or segment_slug(name), MAX_CATEGORY_ID_LENGTH)
        return [_category_record(category_id, name, name)]
    return []


def _category_record(
    category_id: str, name: str, path: str, parent_id: str | None = None
) -> CategoryRecord:
    return CategoryRecord(
        id=category_id,
        name=name[:MAX_CATEGORY_NAME_LENGTH],
        path=path[:MAX_CATEGORY_PATH_LENGTH],
        parent_id=parent_id,
    )


def net_from_gross(gross: float | None, vat: float | None) -> float | None:
    """Derive a net amount as ``gross / (1 + vat / 100)``, rounded to cents."""
    if gross is None or vat is None:
        return None
    return round(gross / (1 + vat / 100), 2)


def map_price_entries(
    entries: list[Any],
    variant_code: str,
    product_vat: float | None,
    ctx: TransformContext,
) -> PriceRecord | None:
    """Merge typed price entries of a variant into one price row.

    ``retail`` entries fill srp_gross/srp_net, ``wholesale`` entries fill
    gross_price/net_price. Net values come from an explicit ``net`` value or
    are derived from the gross amount and VAT (entry VAT, else product VAT).

    Returns:
        The merged PriceRecord, or None when no entry carried an amount.
    """
    record = PriceRecord(variant_code=variant_code)
    found = False

    for entry in entries:
        if isinstance(entry, dict):
            raw_amount = entry.get("amount") or entry.get("gross") or entry.get("value") or entry
            price_type = (extract_text(entry.get("type")) or "retail").lower()
            currency = extract_text(entry.get("currency"))
            vat = ctx.checked("price", variant_code, "vat", _number("vat"), entry.get("vat"))
            net = ctx.checked("price", variant_code, "net", _number("net"), entry.get("net"))
        else:
            raw_amount, price_type, currency, vat, net = entry, "retail", None, None, None

        amount = ctx.checked("price", variant_code, "amount", _number("amount"), raw_amount)
        if amount is None:
            continue
        if price_type not in PRICE_TYPES:
            ctx.issue("price", variant_code, "type", f"Unknown price type {price_type!r} skipped")
            continue

        if vat is None:
            vat = product_vat
        if net is None:
            net = net_from_gross(amount, vat)
        if currency:
            record.currency = currency.upper()[:3]

        if price_type == "wholesale":
            record.gross_price, record.net_price = amount, net
        else:
            record.srp_gross, record.srp_net = amount, net
        found = True

    return record if found else None


def _number(field_name: str) -> Callable[[Any], float | None]:
    return lambda value: normalize_number(value, field_name)


def _integer(field_name: str, default: int | None = None) -> Callable[[Any], int | None]:
    return lambda value: parse_int(value, field_name, default)


def _stock_record(node: Any, variant_code: str, ctx: TransformContext) -> StockRecord | None:
    if node is None or node == "":
        return None
    if not isinstance(node, dict):
        node = {"quantity": node}

    quantity = ctx.checked(
        "stock", variant_code, "quantity", _integer("quantity", 0), node.get("quantity")
    )
    quantity = quantity or 0
    moq = ctx.checked(
        "stock",
        variant_code,
        "min_order_quantity",
        _integer("min_order_quantity", 1),
        node.get("min_order_quantity") or node.get("moq"),
    )

    return StockRecord(
        variant_code=variant_code,
        quantity=quantity,
        available=to_bool(node.get("available")) or quantity > 0,
        min_order_quantity=moq or 1,
    )


def _unit_record(node: Any, ctx: TransformContext) -> UnitRecord:
    if isinstance(node, dict):
        name = extract_text(node.get("name"))
        unit_id = extract_text(node.get("id")) or name or extract_text(node)
        moq = ctx.checked("unit", unit_id, "moq", _integer("moq", 1), node.get("moq"))
    else:
        unit_id, name, moq = extract_text(node), None, 1

    unit_id = fit_identifier((unit_id or DEFAULT_UNIT).strip().lower(), MAX_UNIT_ID_LENGTH)
    name = ctx.clipped("unit", unit_id, "name", name or unit_id, MAX_UNIT_NAME_LENGTH)
    return UnitRecord(id=unit_id, name=name, moq=moq or 1)


def _producer_record(node: Any, ctx: TransformContext) -> ProducerRecord | None:
    if isinstance(node, dict):
        name = extract_text(node.get("name")) or extract_text(node)
    else:
        name = extract_text(node)
    if not name:
        return None
    name = ctx.clipped("producer", name, "name", name, MAX_PRODUCER_NAME_LENGTH)
    return ProducerRecord(name=name)


def _checked_url(
    ctx: TransformContext, entity: str, key: str, field_name: str, value: Any
) -> str | None:
    try:
        result = check_url(value)
    except ValidationError as e:
        ctx.issue(entity, key, field_name, str(e))
        return None
    if len(result.url) > MAX_URL_LENGTH:
        ctx.issue(entity, key, field_name, f"URL longer than {MAX_URL_LENGTH} characters")
        return None
    if result.warning:
        ctx.issue(entity, key, field_name, result.warning, "warning")
    return result.url


def _image_records(nodes: list[Any], code: str, ctx: TransformContext) -> list[ImageRecord]:
    """Build a product's image rows.

    ``is_main`` comes from the node's flag; when no kept image is flagged,
    the first image with a valid URL becomes the main one.
    """
    images: list[ImageRecord] = []
    seen: set[str] = set()
    for node in nodes:
        raw_url = (node.get("url") or node.get(TEXT_KEY)) if isinstance(node, dict) else node
        url = _checked_url(ctx, "image", code, "url", raw_url)
        if url is None or url in seen:
            continue
        seen.add(url)

        is_main = False
        order = None
        if isinstance(node, dict):
            is_main = to_bool(node.get("is_main"))
            order = ctx.checked("image", code, "order", _integer("order"), node.get("order"))
        images.append(
            ImageRecord(
                product_code=code,
                url=url,
                is_main=is_main,
                order=len(images) if order is None else order,
            )
        )

    if images and not any(image.is_main for image in images):
        images[0].is_main = True
    return images


def _variant_records(
    product: dict[str, Any],
    record: ProductRecord,
    bundle: _ProductBundle,
    ctx: TransformContext,
) -> None:
    code = record.code
    nodes = [v for v in product.get("variants", []) if isinstance(v, dict)]
    product_prices = product.get("prices", [])

    if not nodes:
        # Every product gets at least one variant for stock and prices to hang on
        nodes = [
            {
                "code": f"{code}-{DEFAULT_VARIANT_SUFFIX}",
                "ean": record.ean,
                "weight": product.get("weight"),
                "gross_weight": product.get("gross_weight") or product.get("grossweight"),
                "stock": product.get("stock"),
                "prices": product_prices,
            }
        ]

    for position, node in enumerate(nodes, start=1):
        variant_code = extract_text(node.get("code")) or f"{code}-{position}"
        if len(variant_code) > MAX_VARIANT_CODE_LENGTH:
            ctx.issue(
                "variant",
                variant_code[:MAX_VARIANT_CODE_LENGTH],
                "code",
                f"Variant code longer than {MAX_VARIANT_CODE_LENGTH} characters skipped",
            )
            continue
        ean_value = node.get("ean")
        bundle.variants.append(
            VariantRecord(
                code=variant_code,
                product_code=code,
                ean=ctx.checked("variant", variant_code, "ean", clean_ean, ean_value)
                if extract_text(ean_value)
                else None,
                weight=ctx.checked(
                    "variant", variant_code, "weight", _number("weight"), node.get("weight")
                ),
                gross_weight=ctx.checked(
                    "variant",
                    variant_code,
                    "gross_weight",
                    _number("gross_weight"),
                    node.get("gross_weight") or node.get("grossweight"),
                ),
            )
        )

        stock = _stock_record(node.get("stock"), variant_code, ctx)
        if stock is not None:
            bundle.stocks.append(stock)

        entries = node.get("prices") or product_prices
        price = map_price_entries(entries, variant_code, record.vat, ctx)
        if price is not None:
            bundle.prices.append(price)


def transform_product(product: dict[str, Any], ctx: TransformContext) -> _ProductBundle | None:
    """Transform one product node into its bundle of records.

    Returns:
        The bundle, or None when the product has no usable code.
    """
    code = extract_text(product.get("code")) or extract_text(product.get("id"))
    if not code:
        ctx.issue("product", None, "code", "Product without code skipped")
        return None
    if len(code) > MAX_PRODUCT_CODE_LENGTH:
        ctx.issue(
            "product",
            code[:MAX_PRODUCT_CODE_LENGTH],
            "code",
            f"Product code longer than {MAX_PRODUCT_CODE_LENGTH} characters skipped",
        )
        return None

    description = product.get("description")
    if not isinstance(description, dict):
        description = {"long": description} if description else {}

    name = (
        extract_text(description.get("name"))
        or extract_text(description.get("n"))
        or extract_text(product.get("name"))
        or code
    )
    short = description.get("short") or description.get("short_desc")
    long = description.get("long") or description.get("long_desc")

    card = product.get("card")
    raw_url = product.get("url") or (card.get("url") if isinstance(card, dict) else None)

    producer_code = extract_text(product.get("producer_code")) or extract_text(
        product.get("code_producer")
    )
    if producer_code and len(producer_code) > MAX_PRODUCER_CODE_LENGTH:
        message = f"Producer code longer than {MAX_PRODUCER_CODE_LENGTH} characters"
        ctx.issue("product", code, "producer_code", message)
        producer_code = None

    record = ProductRecord(
        code=code,
        name=ctx.clipped("product", code, "name", name, MAX_PRODUCT_NAME_LENGTH),
        description_short=extract_text(short),
        description_long=sanitize_html(long),
        ean=ctx.checked("product", code, "ean", clean_ean, product.get("ean"))
        if extract_text(product.get("ean"))
        else None,
        producer_code=producer_code,
        vat=ctx.checked("product", code, "vat", _number("vat"), product.get("vat")),
        url=_checked_url(ctx, "product", code, "url", raw_url) if extract_text(raw_url) else None,
    )
    bundle = _ProductBundle(product=record)

    # category_idosell is an alternative category tree used when category is absent
    bundle.categories = build_category_chain(product.get("category")) or build_category_chain(
        product.get("category_idosell")
    )
    if bundle.categories:
        record.category_id = bundle.categories[-1].id

    bundle.producer = _producer_record(product.get("producer"), ctx)
    if bundle.producer is not None:
        record.producer_name = bundle.producer.name

    bundle.unit = _unit_record(product.get("unit"), ctx)
    record.unit_id = bundle.unit.id

    _variant_records(product, record, bundle, ctx)
    bundle.images = _image_records(product.get("images", []), code, ctx)
    return bundle


def transform_catalog(catalog: ParsedCatalog | list[dict[str, Any]]) -> CatalogBatch:
    """Transform parsed product nodes into a deduplicated CatalogBatch.

    Args:
        catalog: Parsed catalog (or its list-normalized product nodes).

    Returns:
        CatalogBatch with per-entity records and the issues found.
    """
    products = catalog.products if isinstance(catalog, ParsedCatalog) else catalog
    ctx = TransformContext()

    for index, product in enumerate(products):
        try:
            bundle = transform_product(product, ctx)
        except (TypeError, ValueError, AttributeError) as e:
            key = extract_text(product.get("code")) if isinstance(product, dict) else None
            ctx.issue("product", key, None, f"Product #{index} could not be transformed: {e}")
            continue
        if bundle is not None:
            ctx.accept(bundle)

    batch = ctx.finish()
    logger.info(
        "Transformed %d products (%d errors, %d warnings): %s",
        len(batch.products),
        batch.error_count,
        batch.warning_count,
        batch.counts(),
    )
    return batch
