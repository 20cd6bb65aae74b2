"""Stock model for per-variant availability."""

from sqlalchemy import Boolean, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Stock(Base):
    """Current stock level of a variant, one row per variant.

    Attributes:
        id: Surrogate identifier
        variant_id: Foreign key to the variant (unique)
        quantity: Units on hand at the supplier
        available: Whether the variant can be ordered
        min_order_quantity: Minimum order quantity
    """

    __tablename__ = "stocks"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    variant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("variants.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    available: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    min_order_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    def __repr__(self) -> str:
        return f"<Stock(variant_id={self.variant_id!r}, quantity={self.quantity!r})>"
