"""
Upsert persistence for mirrored Shopify records

Every write is a single INSERT ... ON CONFLICT DO UPDATE keyed by
(shop_domain, Shopify id), so concurrent writers cannot lose an update and
replaying a record never duplicates it. Incoming payloads replace every
stored field (last write wins); fields missing from the payload are nulled.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from storesync.models.shopify import Shop, Product, Order, Customer
from storesync.utils.helpers import parse_datetime, to_decimal, utcnow
from storesync.utils.logger import log


@dataclass
class UpsertResult:
    """Outcome of persisting one record"""
    ok: bool
    upstream_id: Optional[int] = None
    error: Optional[str] = None


def upsert_statement(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: List[str],
    update_values: Dict[str, Any],
):
    """
    Build a dialect-native INSERT ... ON CONFLICT DO UPDATE.

    ``update_values`` maps column name to either a literal or the string
    ``"excluded"`` meaning "take the incoming row's value".
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {dialect}")

    stmt = insert(model).values(**values)
    set_ = {
        column: stmt.excluded[column] if value == "excluded" else value
        for column, value in update_values.items()
    }
    return stmt.on_conflict_do_update(index_elements=conflict_columns, set_=set_)


def _upstream_id(payload: Dict[str, Any]) -> int:
    raw = payload.get("id")
    if raw is None or isinstance(raw, bool):
        raise ValueError("Record has no id")
    try:
        upstream_id = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Record id is not numeric: {raw!r}")
    if upstream_id <= 0:
        raise ValueError(f"Record id must be positive: {upstream_id}")
    return upstream_id


def _tags(value: Any) -> Optional[str]:
    # REST returns "a, b"; some clients send lists
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return value


def _int_or_none(value: Any) -> Optional[int]:
    return None if value is None or value == "" else int(value)


def _product_values(p: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": p.get("title"),
        "vendor": p.get("vendor"),
        "product_type": p.get("product_type"),
        "handle": p.get("handle"),
        "status": p.get("status"),
        "tags": _tags(p.get("tags")),
        "body_html": p.get("body_html"),
        "variants": p.get("variants"),
        "images": p.get("images"),
        "created_at": parse_datetime(p.get("created_at")),
        "updated_at": parse_datetime(p.get("updated_at")),
        "published_at": parse_datetime(p.get("published_at")),
    }


def _order_values(o: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": o.get("name"),
        "email": o.get("email"),
        "total_price": to_decimal(o.get("total_price")),
        "subtotal_price": to_decimal(o.get("subtotal_price")),
        "total_tax": to_decimal(o.get("total_tax")),
        "currency": o.get("currency"),
        "financial_status": o.get("financial_status"),
        "fulfillment_status": o.get("fulfillment_status"),
        "created_at": parse_datetime(o.get("created_at")),
        "updated_at": parse_datetime(o.get("updated_at")),
        "cancelled_at": parse_datetime(o.get("cancelled_at")),
        "customer": o.get("customer"),
        "shipping_address": o.get("shipping_address"),
        "line_items": o.get("line_items"),
        "shipping_lines": o.get("shipping_lines"),
        "fulfillments": o.get("fulfillments"),
        "tags": _tags(o.get("tags")),
        "note": o.get("note"),
        "processing_method": o.get("processing_method"),
    }


def _customer_values(c: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "first_name": c.get("first_name"),
        "last_name": c.get("last_name"),
        "email": c.get("email"),
        "phone": c.get("phone"),
        "created_at": parse_datetime(c.get("created_at")),
        "updated_at": parse_datetime(c.get("updated_at")),
        "orders_count": _int_or_none(c.get("orders_count")),
        "total_spent": to_decimal(c.get("total_spent")),
        "last_order_id": _int_or_none(c.get("last_order_id")),
        "last_order_name": c.get("last_order_name"),
        "verified_email": c.get("verified_email"),
        "accepts_marketing": c.get("accepts_marketing"),
        "tags": _tags(c.get("tags")),
        "state": c.get("state"),
        "note": c.get("note"),
        "addresses": c.get("addresses"),
    }


@dataclass(frozen=True)
class ResourceMapping:
    model: Any
    id_column: str
    build_values: Callable[[Dict[str, Any]], Dict[str, Any]]


RESOURCE_MAPPINGS: Dict[str, ResourceMapping] = {
    "products": ResourceMapping(Product, "shopify_product_id", _product_values),
    "orders": ResourceMapping(Order, "shopify_order_id", _order_values),
    "customers": ResourceMapping(Customer, "shopify_customer_id", _customer_values),
}


def upsert_record(
    db: Session,
    resource_type: str,
    shop_domain: str,
    payload: Dict[str, Any],
    synced_at: Optional[datetime] = None,
) -> UpsertResult:
    """
    Insert or fully replace one mirrored record.

    Bad records are logged and reported through the result instead of
    raising, so one malformed row never aborts the rest of its page.

    Args:
        db: Database session
        resource_type: products, orders or customers
        shop_domain: Tenant the record belongs to
        payload: Raw record from the Admin API
        synced_at: Timestamp to stamp as last_synced (defaults to now)

    Returns:
        UpsertResult
    """
    mapping = RESOURCE_MAPPINGS.get(resource_type)
    if mapping is None:
        raise ValueError(f"Unknown resource type: {resource_type}")

    upstream_id = None
    try:
        upstream_id = _upstream_id(payload)

        values = mapping.build_values(payload)
        values["shop_domain"] = shop_domain
        values[mapping.id_column] = upstream_id
        values["last_synced"] = synced_at or utcnow()

        key_columns = ["shop_domain", mapping.id_column]
        update_values = {column: "excluded" for column in values if column not in key_columns}

        db.execute(upsert_statement(db, mapping.model, values, key_columns, update_values))
        db.commit()

        return UpsertResult(ok=True, upstream_id=upstream_id)

    except Exception as e:
        db.rollback()
        log.error(f"Error upserting {resource_type[:-1]} {upstream_id or payload.get('id')} for {shop_domain}: {str(e)}")
        return UpsertResult(ok=False, upstream_id=upstream_id, error=str(e)[:500])


def upsert_records(
    db: Session,
    resource_type: str,
    shop_domain: str,
    payloads: Iterable[Dict[str, Any]],
) -> List[UpsertResult]:
    """Upsert a page of records one at a time, sharing a single sync timestamp."""
    synced_at = utcnow()
    return [upsert_record(db, resource_type, shop_domain, p, synced_at=synced_at) for p in payloads]


_SHOP_FIELDS = (
    "name", "email", "currency", "country", "province", "address1", "city", "zip",
    "phone", "money_format", "money_with_currency_format", "plan_name",
    "enabled_presentment_currencies",
)


def upsert_shop(
    db: Session,
    shop_domain: str,
    shop_data: Dict[str, Any],
    access_token: Optional[str] = None,
) -> Shop:
    """
    Create or refresh a tenant from its shop.json payload.

    The stored credential is only replaced when a new one is supplied.
    """
    values = {field: shop_data.get(field) for field in _SHOP_FIELDS}
    values["shopify_shop_id"] = _upstream_id(shop_data)
    values["domain"] = shop_domain
    values["last_updated"] = utcnow()
    if access_token:
        values["access_token"] = access_token

    update_values = {column: "excluded" for column in values if column != "domain"}

    try:
        db.execute(upsert_statement(db, Shop, values, ["domain"], update_values))
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info(f"Shop {shop_domain} stored")
    return db.query(Shop).filter(Shop.domain == shop_domain).one()
