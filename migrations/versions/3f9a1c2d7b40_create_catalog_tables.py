"""create_catalog_tables

Revision ID: 3f9a1c2d7b40
Revises:
Create Date: 2026-10-12 09:41:27.518204

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2d7b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the catalog tables and the sync_health run log."""
    # Reference tables
    op.create_table(
        "categories",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("path", sa.String(1024), nullable=True),
        sa.Column(
            "parent_id",
            sa.String(255),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    op.create_index("ix_categories_parent_id", "categories", ["parent_id"])

    op.create_table(
        "producers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), unique=True, nullable=False),
    )

    op.create_table(
        "units",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("moq", sa.Integer, nullable=False, server_default="1"),
    )

    # Products and their dependents
    op.create_table(
        "products",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("description_short", sa.Text, nullable=True),
        sa.Column("description_long", sa.Text, nullable=True),
        sa.Column("ean", sa.String(14), nullable=True),
        sa.Column("producer_code", sa.String(100), nullable=True),
        sa.Column(
            "category_id",
            sa.String(255),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "producer_id",
            sa.Integer,
            sa.ForeignKey("producers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "unit_id",
            sa.String(50),
            sa.ForeignKey("units.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("vat", sa.Float, nullable=True),
        sa.Column("url", sa.String(1024), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_products_code", "products", ["code"], unique=True)
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_producer_id", "products", ["producer_id"])

    op.create_table(
        "variants",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "product_id",
            sa.Integer,
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(150), nullable=False),
        sa.Column("ean", sa.String(14), nullable=True),
        sa.Column("weight", sa.Float, nullable=True),
        sa.Column("gross_weight", sa.Float, nullable=True),
    )
    op.create_index("ix_variants_code", "variants", ["code"], unique=True)
    op.create_index("ix_variants_product_id", "variants", ["product_id"])

    op.create_table(
        "stocks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "variant_id",
            sa.Integer,
            sa.ForeignKey("variants.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("min_order_quantity", sa.Integer, nullable=False, server_default="1"),
    )

    op.create_table(
        "prices",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "variant_id",
            sa.Integer,
            sa.ForeignKey("variants.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("gross_price", sa.Float, nullable=True),
        sa.Column("net_price", sa.Float, nullable=True),
        sa.Column("srp_gross", sa.Float, nullable=True),
        sa.Column("srp_net", sa.Float, nullable=True),
    )

    op.create_table(
        "images",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "product_id",
            sa.Integer,
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("is_main", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("product_id", "url", name="uq_images_product_url"),
    )
    op.create_index("ix_images_product_id", "images", ["product_id"])

    # One row per sync run
    op.create_table(
        "sync_health",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("sync_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Float, nullable=True),
        sa.Column("api_url", sa.String(1024), nullable=True),
        sa.Column("request_size_bytes", sa.Integer, nullable=True),
        sa.Column("items_processed", sa.JSON, nullable=False),
        sa.Column("error_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON, nullable=False),
        sa.Column("memory_usage_mb", sa.Float, nullable=True),
    )
    op.create_index("ix_sync_health_start_time", "sync_health", ["start_time"])
    op.create_index("ix_sync_health_status", "sync_health", ["status"])
    op.create_index("ix_sync_health_sync_type", "sync_health", ["sync_type"])


def downgrade() -> None:
    """Drop all catalog tables in reverse order."""
    op.drop_index("ix_sync_health_sync_type", table_name="sync_health")
    op.drop_index("ix_sync_health_status", table_name="sync_health")
    op.drop_index("ix_sync_health_start_time", table_name="sync_health")
    op.drop_table("sync_health")

    # Drop tables in reverse order of creation (due to foreign keys)
    op.drop_index("ix_images_product_id", table_name="images")
    op.drop_table("images")
    op.drop_table("prices")
    op.drop_table("stocks")
    op.drop_index("ix_variants_product_id", table_name="variants")
    op.drop_index("ix_variants_code", table_name="variants")
    op.drop_table("variants")
    op.drop_index("ix_products_producer_id", table_name="products")
    op.drop_index("ix_products_category_id", table_name="products")
    op.drop_index("ix_products_code", table_name="products")
    op.drop_table("products")
    op.drop_table("units")
    op.drop_table("producers")
    op.drop_index("ix_categories_parent_id", table_name="categories")
    op.drop_table("categories")
