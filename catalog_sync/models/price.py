"""Price model for per-variant wholesale and retail prices."""

from sqlalchemy import Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Price(Base):
    """Prices of a variant, one row per variant.

    Attributes:
        id: Surrogate identifier
        variant_id: Foreign key to the variant (unique)
        currency: ISO currency code
        gross_price: Wholesale price including VAT
        net_price: Wholesale price excluding VAT
        srp_gross: Suggested retail price including VAT
        srp_net: Suggested retail price excluding VAT
    """

    __tablename__ = "prices"

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
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="EUR",
    )
    gross_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    net_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    srp_gross: Mapped[float | None] = mapped_column(Float, nullable=True)
    srp_net: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Price(variant_id={self.variant_id!r}, "
            f"gross_price={self.gross_price!r}, srp_gross={self.srp_gross!r})>"
        )
