"""Category model for the supplier's hierarchical catalog tree."""

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Category(Base):
    """Category model, one row per level of a category path.

    Attributes:
        id: Deterministic slug derived from the category path (or name)
        name: Display name of this level
        path: Full ancestor chain joined by "/" (e.g. "Tools/Power Tools")
        parent_id: Id of the parent level, or None for top-level categories
    """

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    path: Mapped[str | None] = mapped_column(
        String(1024),
        nullable=True,
    )
    parent_id: Mapped[str | None] = mapped_column(
        String(255),
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Category(id={self.id!r}, path={self.path!r})>"
