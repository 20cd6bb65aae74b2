"""SQLAlchemy models for the GEKO catalog."""

from catalog_sync.models.category import Category
from catalog_sync.models.image import Image
from catalog_sync.models.import_job import ImportJob
from catalog_sync.models.price import Price
from catalog_sync.models.producer import Producer
from catalog_sync.models.product import Product
from catalog_sync.models.stock import Stock
from catalog_sync.models.sync_health import SyncHealth
from catalog_sync.models.unit import Unit
from catalog_sync.models.variant import Variant

__all__ = [
    "Category",
    "Producer",
    "Unit",
    "Product",
    "Variant",
    "Stock",
    "Price",
    "Image",
    "SyncHealth",
    "ImportJob",
]
