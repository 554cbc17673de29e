"""storesync - Shopify storefront data mirror"""

__version__ = "1.0.0"
