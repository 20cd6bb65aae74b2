"""Variant model for sellable product variants."""

from sqlalchemy import Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Variant(Base):
    """Variant of a product; stock and prices attach here.

    Attributes:
        id: Surrogate identifier
        product_id: Foreign key to the owning product
        code: Supplier variant code (natural key)
        ean: Validated EAN barcode, or None
        weight: Net weight
        gross_weight: Gross (shipping) weight
    """

    __tablename__ = "variants"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(
        String(150),
        unique=True,
        nullable=False,
        index=True,
    )
    ean: Mapped[str | None] = mapped_column(
        String(14),
        nullable=True,
    )
    weight: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
    gross_weight: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Variant(code={self.code!r}, product_id={self.product_id!r})>"
