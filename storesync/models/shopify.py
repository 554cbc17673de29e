"""
Shopify Data Models

Local mirror of data pulled from the Shopify Admin API, partitioned by shop.
Each mirrored resource is unique on (shop_domain, Shopify id); that pair is
the conflict target for every upsert.
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, JSON, Boolean, Text, BigInteger, Numeric,
    Index, UniqueConstraint
)
from storesync.utils.helpers import utcnow

from storesync.models.base import Base


class Shop(Base):
    """
    A connected storefront (tenant)

    Synced from Shopify Admin API: GET /admin/api/2024-07/shop.json
    """
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)

    shopify_shop_id = Column(BigInteger, unique=True, nullable=False)
    domain = Column(String, unique=True, index=True, nullable=False)  # my-store.myshopify.com

    # Display / locale metadata (formatting only)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    country = Column(String, nullable=True)
    province = Column(String, nullable=True)
    address1 = Column(String, nullable=True)
    city = Column(String, nullable=True)
    zip = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    money_format = Column(String, nullable=True)
    money_with_currency_format = Column(String, nullable=True)
    plan_name = Column(String, nullable=True)
    enabled_presentment_currencies = Column(JSON, nullable=True)  # ["USD", "EUR"]

    # Admin API credential used by scheduled syncs; never served to the UI
    access_token = Column(Text, nullable=True)

    last_updated = Column(DateTime, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "shopify_shop_id": self.shopify_shop_id,
            "domain": self.domain,
            "name": self.name,
            "email": self.email,
            "currency": self.currency,
            "country": self.country,
            "province": self.province,
            "address1": self.address1,
            "city": self.city,
            "zip": self.zip,
            "phone": self.phone,
            "money_format": self.money_format,
            "money_with_currency_format": self.money_with_currency_format,
            "plan_name": self.plan_name,
            "enabled_presentment_currencies": self.enabled_presentment_currencies or [],
            "last_updated": self.last_updated,
        }


class _MirroredRecord:
    """Column-to-dict serialisation shared by mirrored resources"""

    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class Product(_MirroredRecord, Base):
    """
    Shopify products catalog

    Synced from Shopify Admin API: GET /admin/api/2024-07/products.json
    """
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("shop_domain", "shopify_product_id", name="uq_products_shop_product"),
        Index("ix_products_shop_status", "shop_domain", "status"),
        Index("ix_products_shop_vendor", "shop_domain", "vendor"),
        Index("ix_products_shop_product_type", "shop_domain", "product_type"),
    )

    id = Column(Integer, primary_key=True, index=True)

    shop_domain = Column(String, index=True, nullable=False)
    shopify_product_id = Column(BigInteger, nullable=False)

    title = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    handle = Column(String, nullable=True)  # URL-friendly identifier
    status = Column(String, nullable=True)  # active, archived, draft
    tags = Column(Text, nullable=True)  # Comma-separated, as Shopify sends it
    body_html = Column(Text, nullable=True)

    variants = Column(JSON, nullable=True)  # [{id, title, price, sku, inventory_quantity, ...}, ...]
    images = Column(JSON, nullable=True)  # [{id, src, alt, position}, ...]

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    published_at = Column(DateTime, nullable=True)

    # Sync metadata
    last_synced = Column(DateTime, default=utcnow)


class Order(_MirroredRecord, Base):
    """
    Shopify orders

    Synced from Shopify Admin API: GET /admin/api/2024-07/orders.json
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("shop_domain", "shopify_order_id", name="uq_orders_shop_order"),
        Index("ix_orders_shop_financial_status", "shop_domain", "financial_status"),
        Index("ix_orders_shop_fulfillment_status", "shop_domain", "fulfillment_status"),
        Index("ix_orders_shop_created_at", "shop_domain", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    shop_domain = Column(String, index=True, nullable=False)
    shopify_order_id = Column(BigInteger, nullable=False)

    name = Column(String, nullable=True)  # "#1001"
    email = Column(String, nullable=True)

    # Amounts (store currency)
    total_price = Column(Numeric(12, 2), nullable=True)
    subtotal_price = Column(Numeric(12, 2), nullable=True)
    total_tax = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, nullable=True)

    financial_status = Column(String, nullable=True)  # pending, paid, refunded, ...
    fulfillment_status = Column(String, nullable=True)  # fulfilled, partial, restocked, null

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Denormalised snapshots
    customer = Column(JSON, nullable=True)  # {id, first_name, last_name, email, phone}
    shipping_address = Column(JSON, nullable=True)
    line_items = Column(JSON, nullable=True)  # [{id, product_id, variant_id, title, quantity, price, sku, vendor}, ...]
    shipping_lines = Column(JSON, nullable=True)
    fulfillments = Column(JSON, nullable=True)  # [{id, status, tracking_company, tracking_number, ...}, ...]

    tags = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    processing_method = Column(String, nullable=True)

    # Sync metadata
    last_synced = Column(DateTime, default=utcnow)


class Customer(_MirroredRecord, Base):
    """
    Shopify customers

    Synced from Shopify Admin API: GET /admin/api/2024-07/customers.json
    """
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("shop_domain", "shopify_customer_id", name="uq_customers_shop_customer"),
        Index("ix_customers_shop_email", "shop_domain", "email"),
        Index("ix_customers_shop_total_spent", "shop_domain", "total_spent"),
        Index("ix_customers_shop_orders_count", "shop_domain", "orders_count"),
    )

    id = Column(Integer, primary_key=True, index=True)

    shop_domain = Column(String, index=True, nullable=False)
    shopify_customer_id = Column(BigInteger, nullable=False)

    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    orders_count = Column(Integer, nullable=True)
    total_spent = Column(Numeric(12, 2), nullable=True)
    last_order_id = Column(BigInteger, nullable=True)
    last_order_name = Column(String, nullable=True)

    verified_email = Column(Boolean, nullable=True)
    accepts_marketing = Column(Boolean, nullable=True)
    tags = Column(Text, nullable=True)
    state = Column(String, nullable=True)  # enabled, disabled, invited, declined
    note = Column(Text, nullable=True)
    addresses = Column(JSON, nullable=True)

    # Sync metadata
    last_synced = Column(DateTime, default=utcnow)
