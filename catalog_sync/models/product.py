"""Product model for supplier catalog items."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Product(Base):
    """Product model representing one supplier catalog item.

    Attributes:
        id: Surrogate identifier
        code: Supplier product code (natural key)
        name: Product name
        description_short: Short plain description
        description_long: Long HTML description with script blocks removed
        ean: Validated EAN barcode, or None
        producer_code: Producer's own reference for the product
        category_id: Foreign key to the deepest category level
        producer_id: Foreign key to the producer
        unit_id: Foreign key to the sales unit
        vat: VAT rate in percent
        url: Validated product page URL, or None
        updated_at: Timestamp of the last sync that wrote the row
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    code: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    description_short: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    description_long: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    ean: Mapped[str | None] = mapped_column(
        String(14),
        nullable=True,
    )
    producer_code: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    category_id: Mapped[str | None] = mapped_column(
        String(255),
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    producer_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("producers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    unit_id: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("units.id", ondelete="SET NULL"),
        nullable=True,
    )
    vat: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    url: Mapped[str | None] = mapped_column(
        String(1024),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Product(code={self.code!r}, name={self.name!r})>"
