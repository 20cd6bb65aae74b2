"""Unit of measure model."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class Unit(Base):
    """Sales unit (e.g. "pcs", "box").

    Attributes:
        id: Natural key of the unit
        name: Human-readable unit name
        moq: Minimum order quantity expressed in this unit
    """

    __tablename__ = "units"

    id: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    moq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    def __repr__(self) -> str:
        return f"<Unit(id={self.id!r}, moq={self.moq!r})>"
