"""Database models for the storefront sync service"""

from storesync.models.shopify import (
    Shop,
    Product,
    Order,
    Customer
)

from storesync.models.sync_status import SyncStatus

__all__ = [
    "Shop",
    "Product",
    "Order",
    "Customer",
    "SyncStatus",
]
