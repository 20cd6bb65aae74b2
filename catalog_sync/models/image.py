"""Image model for product pictures."""

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Image(Base):
    """Product image, unique per (product, url).

    Attributes:
        id: Surrogate identifier
        product_id: Foreign key to the product
        url: Validated image URL
        is_main: Whether this is the product's main image
        order: Display position
    """

    __tablename__ = "images"
    __table_args__ = (
        UniqueConstraint("product_id", "url", name="uq_images_product_url"),
    )

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
    url: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
    )
    is_main: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<Image(product_id={self.product_id!r}, url={self.url!r})>"
