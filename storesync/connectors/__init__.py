"""Data connectors for the storefront sync service"""

from storesync.connectors.shopify import (
    ShopifyConnector,
    ShopifyAPIError,
    ShopifyRateLimitError,
    Page,
    RESOURCE_TYPES,
    MAX_PAGE_SIZE,
)

__all__ = [
    "ShopifyConnector",
    "ShopifyAPIError",
    "ShopifyRateLimitError",
    "Page",
    "RESOURCE_TYPES",
    "MAX_PAGE_SIZE",
]
