"""Producer model for product manufacturers."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Producer(Base):
    """Producer (manufacturer / brand) keyed by its unique name.

    Attributes:
        id: Surrogate identifier
        name: Producer name, the natural key used for deduplication
    """

    __tablename__ = "producers"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Producer(id={self.id!r}, name={self.name!r})>"
