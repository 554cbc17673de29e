"""
Cached Data Service

Read-only views over the locally mirrored Shopify data: filtered, sorted and
paginated listings plus the aggregates the dashboard shows. Nothing here
calls Shopify; everything reflects the last completed sync.
"""
import math
import re
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import String, asc, cast, desc, func, or_
from sqlalchemy.orm import Query, Session

from storesync.config import get_settings
from storesync.models.shopify import Customer, Order, Product, Shop
from storesync.services.sync_status import SyncStatusTracker
from storesync.utils.helpers import parse_datetime, safe_divide, utcnow
from storesync.utils.response_cache import analytics_key, response_cache

settings = get_settings()

MAX_PAGE_SIZE = 250

# Fixed filter vocabularies shown by the UI
PRODUCT_STATUSES = ["active", "archived", "draft"]
FINANCIAL_STATUSES = [
    "pending", "authorized", "paid", "partially_paid",
    "refunded", "voided", "partially_refunded",
]
FULFILLMENT_STATUSES = ["fulfilled", "partial", "restocked", None]
CUSTOMER_STATES = ["enabled", "disabled", "invited", "declined"]

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}

BARE_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")

PRODUCT_SORTS = {
    "title": Product.title,
    "vendor": Product.vendor,
    "product_type": Product.product_type,
    "status": Product.status,
    "created_at": Product.created_at,
    "updated_at": Product.updated_at,
    "published_at": Product.published_at,
}
ORDER_SORTS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "total_price": Order.total_price,
    "name": Order.name,
    "financial_status": Order.financial_status,
    "fulfillment_status": Order.fulfillment_status,
}
CUSTOMER_SORTS = {
    "created_at": Customer.created_at,
    "updated_at": Customer.updated_at,
    "total_spent": Customer.total_spent,
    "orders_count": Customer.orders_count,
    "first_name": Customer.first_name,
    "last_name": Customer.last_name,
    "email": Customer.email,
}


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if total else 0,
        "total_count": total,
        "per_page": limit,
    }


def _latest_synced(rows: List[Any]):
    stamps = [r.last_synced for r in rows if r.last_synced is not None]
    return max(stamps) if stamps else None


def _is_bare_date(value: str) -> bool:
    return BARE_DATE.fullmatch(value.strip()) is not None


class CachedDataService:
    """Listings and aggregates for one request's database session"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_paging(page: int, limit: int):
        if page < 1:
            raise ValueError("page must be 1 or greater")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

    @staticmethod
    def _sorted(query: Query, sorts: Dict[str, Any], sort: str, default: str, order: str) -> Query:
        column = sorts.get(sort, sorts[default])
        direction = desc if order == "desc" else asc
        return query.order_by(direction(column))

    @staticmethod
    def _page(query: Query, page: int, limit: int) -> List[Any]:
        return query.offset((page - 1) * limit).limit(limit).all()

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def get_products(
        self,
        shop_domain: str,
        page: int = 1,
        limit: int = MAX_PAGE_SIZE,
        search: str = "",
        vendor: str = "",
        product_type: str = "",
        status: str = "",
        sort: str = "title",
        order: str = "asc",
    ) -> dict:
        self._check_paging(page, limit)

        query = self.db.query(Product).filter(Product.shop_domain == shop_domain)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Product.title.ilike(pattern),
                Product.tags.ilike(pattern),
                Product.handle.ilike(pattern),
            ))
        if vendor:
            query = query.filter(Product.vendor.ilike(f"%{vendor}%"))
        if product_type:
            query = query.filter(Product.product_type.ilike(f"%{product_type}%"))
        if status:
            query = query.filter(Product.status == status)

        total = query.count()
        rows = self._page(self._sorted(query, PRODUCT_SORTS, sort, "title", order), page, limit)

        vendors = (
            self.db.query(Product.vendor).distinct()
            .filter(Product.shop_domain == shop_domain, Product.vendor.isnot(None), Product.vendor != "")
            .all()
        )
        product_types = (
            self.db.query(Product.product_type).distinct()
            .filter(
                Product.shop_domain == shop_domain,
                Product.product_type.isnot(None),
                Product.product_type != "",
            )
            .all()
        )

        return {
            "products": [r.to_dict() for r in rows],
            "pagination": _pagination(page, limit, total),
            "filters": {
                "vendors": sorted(v for (v,) in vendors),
                "product_types": sorted(t for (t,) in product_types),
                "statuses": PRODUCT_STATUSES,
            },
            "last_synced": _latest_synced(rows),
        }

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def get_orders(
        self,
        shop_domain: str,
        page: int = 1,
        limit: int = MAX_PAGE_SIZE,
        search: str = "",
        financial_status: str = "",
        fulfillment_status: str = "",
        date_from: str = "",
        date_to: str = "",
        sort: str = "created_at",
        order: str = "desc",
    ) -> dict:
        """
        Orders page plus revenue aggregates over every order matching the
        filters (not just the returned page).

        Raises ValueError for an unparsable date_from / date_to.
        """
        self._check_paging(page, limit)

        query = self.db.query(Order).filter(Order.shop_domain == shop_domain)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Order.name.ilike(pattern),
                Order.email.ilike(pattern),
                cast(Order.customer, String).ilike(pattern),
            ))
        if financial_status:
            query = query.filter(Order.financial_status == financial_status)
        if fulfillment_status:
            query = query.filter(Order.fulfillment_status == fulfillment_status)
        if date_from:
            query = query.filter(Order.created_at >= parse_datetime(date_from))
        if date_to:
            end = parse_datetime(date_to)
            if _is_bare_date(date_to):
                # A bare date covers the whole day
                query = query.filter(Order.created_at < end + timedelta(days=1))
            else:
                query = query.filter(Order.created_at <= end)

        total = query.count()
        revenue = query.with_entities(func.sum(Order.total_price)).scalar()
        rows = self._page(self._sorted(query, ORDER_SORTS, sort, "created_at", order), page, limit)

        total_revenue = _to_float(revenue)
        return {
            "orders": [r.to_dict() for r in rows],
            "pagination": _pagination(page, limit, total),
            "analytics": {
                "total_revenue": round(total_revenue, 2),
                "order_count": total,
                "average_order_value": round(safe_divide(total_revenue, total), 2),
            },
            "filters": {
                "financial_statuses": FINANCIAL_STATUSES,
                "fulfillment_statuses": FULFILLMENT_STATUSES,
            },
            "last_synced": _latest_synced(rows),
        }

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def get_customers(
        self,
        shop_domain: str,
        page: int = 1,
        limit: int = MAX_PAGE_SIZE,
        search: str = "",
        state: str = "",
        min_orders: Optional[int] = None,
        max_orders: Optional[int] = None,
        min_spent: Optional[float] = None,
        max_spent: Optional[float] = None,
        sort: str = "created_at",
        order: str = "desc",
    ) -> dict:
        self._check_paging(page, limit)

        query = self.db.query(Customer).filter(Customer.shop_domain == shop_domain)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Customer.first_name.ilike(pattern),
                Customer.last_name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern),
            ))
        if state:
            query = query.filter(Customer.state == state)
        if min_orders is not None:
            query = query.filter(Customer.orders_count >= min_orders)
        if max_orders is not None:
            query = query.filter(Customer.orders_count <= max_orders)
        if min_spent is not None:
            query = query.filter(Customer.total_spent >= Decimal(str(min_spent)))
        if max_spent is not None:
            query = query.filter(Customer.total_spent <= Decimal(str(max_spent)))

        total = query.count()
        spent, orders = query.with_entities(
            func.sum(Customer.total_spent), func.sum(Customer.orders_count)
        ).one()
        rows = self._page(self._sorted(query, CUSTOMER_SORTS, sort, "created_at", order), page, limit)

        return {
            "customers": [r.to_dict() for r in rows],
            "pagination": _pagination(page, limit, total),
            "analytics": {
                "total_customers": total,
                "total_spent": round(_to_float(spent), 2),
                "average_orders_per_customer": round(safe_divide(_to_float(orders), total), 2),
            },
            "filters": {"states": CUSTOMER_STATES},
            "last_synced": _latest_synced(rows),
        }

    # ------------------------------------------------------------------
    # Shop / status
    # ------------------------------------------------------------------

    def get_shop(self, shop_domain: str) -> Optional[dict]:
        shop = self.db.query(Shop).filter(Shop.domain == shop_domain).first()
        return shop.to_dict() if shop else None

    def get_sync_status(self, shop_domain: str) -> Dict[str, dict]:
        return SyncStatusTracker(self.db).get_status(shop_domain)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_analytics(self, shop_domain: str, period: str = "30d") -> dict:
        """
        Dashboard analytics for a trailing period.

        Revenue, order count, top products and recent orders cover the
        period; customer and product counts cover the whole shop; the monthly
        trend covers the 12 most recent months that have orders.

        Results are cached per (shop, period) and dropped after each sync.
        """
        if period not in PERIOD_DAYS:
            raise ValueError(f"Unsupported period: {period}")

        cache_key = analytics_key(shop_domain, period)
        cached = response_cache.get(cache_key)
        if cached is not None:
            return cached

        now = utcnow()
        since = now - timedelta(days=PERIOD_DAYS[period])

        period_orders = self.db.query(Order).filter(
            Order.shop_domain == shop_domain,
            Order.created_at >= since,
        )
        order_count = period_orders.count()
        total_revenue = _to_float(period_orders.with_entities(func.sum(Order.total_price)).scalar())

        customer_count = self.db.query(func.count(Customer.id)).filter(
            Customer.shop_domain == shop_domain
        ).scalar() or 0
        product_count = self.db.query(func.count(Product.id)).filter(
            Product.shop_domain == shop_domain
        ).scalar() or 0

        recent = period_orders.order_by(desc(Order.created_at)).limit(10).all()

        result = {
            "period": period,
            "metrics": {
                "total_revenue": round(total_revenue, 2),
                "order_count": order_count,
                "customer_count": customer_count,
                "product_count": product_count,
                "average_order_value": round(safe_divide(total_revenue, order_count), 2),
            },
            "top_products": self._top_products(period_orders.with_entities(Order.line_items).all()),
            "recent_orders": [o.to_dict() for o in recent],
            "monthly_trend": self._monthly_trend(shop_domain),
            "generated_at": now,
        }

        response_cache.set(cache_key, result, ttl=settings.analytics_cache_ttl_seconds)
        return result

    @staticmethod
    def _top_products(line_item_rows, limit: int = 10) -> List[dict]:
        """Rank products by line-item revenue (price x quantity)."""
        totals: Dict[Any, dict] = {}
        for (line_items,) in line_item_rows:
            for item in line_items or []:
                product_id = item.get("product_id")
                quantity = int(item.get("quantity") or 0)
                entry = totals.setdefault(product_id, {
                    "product_id": product_id,
                    "title": item.get("title"),
                    "revenue": 0.0,
                    "quantity": 0,
                })
                entry["revenue"] += _to_float(item.get("price")) * quantity
                entry["quantity"] += quantity

        ranked = sorted(totals.values(), key=lambda e: e["revenue"], reverse=True)[:limit]
        for entry in ranked:
            entry["revenue"] = round(entry["revenue"], 2)
        return ranked

    def _monthly_trend(self, shop_domain: str, months: int = 12) -> List[dict]:
        rows = (
            self.db.query(Order.created_at, Order.total_price)
            .filter(Order.shop_domain == shop_domain, Order.created_at.isnot(None))
            .all()
        )

        buckets = defaultdict(lambda: {"revenue": 0.0, "orders": 0})
        for created_at, total_price in rows:
            bucket = buckets[(created_at.year, created_at.month)]
            bucket["revenue"] += _to_float(total_price)
            bucket["orders"] += 1

        trend = []
        for (year, month) in sorted(buckets, reverse=True)[:months]:
            bucket = buckets[(year, month)]
            trend.append({
                "year": year,
                "month": month,
                "revenue": round(bucket["revenue"], 2),
                "orders": bucket["orders"],
            })
        return trend
