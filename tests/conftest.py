"""Shared fixtures: a throwaway SQLite catalog database and sample feeds."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import catalog_sync.models  # noqa: F401  (registers every table on Base.metadata)
from catalog_sync.database import Base, create_engine, create_session_factory

SAMPLE_CATALOG = """<?xml version="1.0" encoding="UTF-8"?>
<geko>
  <products>
    <product code="P-100" vat="23">
      <ean>4006381333931</ean>
      <description>
        <name>Cordless Drill</name>
        <short>18V drill</short>
        <long><![CDATA[<p>Strong</p><script>alert(1)</script>]]></long>
      </description>
      <category path="Tools/Power Tools/Drills"/>
      <producer name="Bosch"/>
      <unit id="PCS" name="Pieces" moq="1"/>
      <url>https://shop.example.com/p-100</url>
      <variants>
        <variant code="P-100-A">
          <ean>4006381333931</ean>
          <weight>1,5</weight>
          <stock quantity="12"/>
          <prices>
            <price type="retail">123.00</price>
            <price type="wholesale">100.00</price>
          </prices>
        </variant>
      </variants>
      <images>
        <image url="https://cdn.example.com/p-100.jpg"/>
        <image url="cdn.example.com/p-100-2.jpg"/>
      </images>
    </product>
    <product code="P-200">
      <name>Claw Hammer</name>
      <category>Tools/Hand Tools</category>
      <producer>Stanley</producer>
      <weight>0.8</weight>
      <stock>5</stock>
      <prices>
        <price type="retail" vat="23">24.60</price>
      </prices>
    </product>
  </products>
</geko>
"""

# Same catalog, but P-200 carries a barcode with a bad check digit
CATALOG_WITH_BAD_EAN = SAMPLE_CATALOG.replace(
    "<name>Claw Hammer</name>",
    "<name>Claw Hammer</name><ean>4006381333932</ean>",
)


@pytest.fixture
def sample_catalog() -> str:
    """A two-product GEKO catalog document."""
    return SAMPLE_CATALOG


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine with the catalog schema created."""
    engine = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return create_session_factory(engine)


@pytest.fixture
def catalog_with_bad_ean() -> str:
    """The sample catalog with one invalid barcode."""
    return CATALOG_WITH_BAD_EAN
