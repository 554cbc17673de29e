"""
Helper utilities
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser as date_parser


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a Shopify timestamp into naive UTC.

    Shopify returns ISO-8601 strings with the shop's UTC offset
    (e.g. "2024-03-01T10:15:00-05:00"). Raises ValueError on garbage so the
    caller can reject the record.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = date_parser.parse(str(value))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a Shopify money string ("12.50") to Decimal"""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid money value: {value!r}")


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def normalize_shop_domain(shop: str) -> str:
    """Turn "my-store" or "https://my-store.myshopify.com/" into "my-store.myshopify.com"."""
    domain = shop.strip().lower()
    domain = domain.replace("https://", "").replace("http://", "").rstrip("/")
    if "." not in domain:
        domain = f"{domain}.myshopify.com"
    return domain
