"""
Shared fixtures: an in-memory SQLite database and a fake Shopify Admin API.
"""
import os

os.environ.setdefault("LOG_TO_FILE", "false")

import json
from typing import Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storesync.connectors.shopify import ShopifyConnector
from storesync.models.base import init_db
from storesync.models.shopify import Shop
from storesync.utils.response_cache import response_cache

SHOP = "test-store.myshopify.com"
TOKEN = "shpat_test_token"


class FakeShopify:
    """
    In-process Admin API serving since_id pages from fixed record lists.

    rate_limited:  {(resource, since_id): n} answers 429 n times first
    failures:      {resource: status} answers that status on every request
    """

    def __init__(
        self,
        records: Optional[Dict[str, List[dict]]] = None,
        shop: Optional[dict] = None,
        rate_limited: Optional[Dict[tuple, int]] = None,
        failures: Optional[Dict[str, int]] = None,
    ):
        self.records = records or {}
        self.shop = shop or {"id": 1001, "name": "Test Store", "currency": "USD"}
        self.rate_limited = dict(rate_limited or {})
        self.failures = failures or {}
        self.requests: List[httpx.Request] = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        resource = request.url.path.rsplit("/", 1)[-1].replace(".json", "")

        if resource == "shop":
            return httpx.Response(200, json={"shop": self.shop})

        if resource in self.failures:
            return httpx.Response(self.failures[resource], json={"errors": "boom"})

        since_id = int(request.url.params.get("since_id", 0))
        limit = int(request.url.params.get("limit", 50))

        key = (resource, since_id)
        if self.rate_limited.get(key, 0) > 0:
            self.rate_limited[key] -= 1
            return httpx.Response(429, json={"errors": "Exceeded 2 calls per second"})

        rows = sorted(
            (r for r in self.records.get(resource, []) if r["id"] > since_id),
            key=lambda r: r["id"],
        )
        created_at_min = request.url.params.get("created_at_min")
        if created_at_min:
            rows = [r for r in rows if r.get("created_at", "") >= created_at_min]

        return httpx.Response(200, content=json.dumps({resource: rows[:limit]}))

    def requests_for(self, resource: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(f"/{resource}.json")]

    def connector_factory(self, shop_domain: str, access_token: str) -> ShopifyConnector:
        return ShopifyConnector(
            shop_domain,
            access_token,
            transport=self.transport,
            rate_limit_backoff=0,
            page_delay=0,
            sleep=no_sleep,
        )


async def no_sleep(seconds: float):
    return None


def make_products(count: int, start_id: int = 1) -> List[dict]:
    return [
        {
            "id": start_id + i,
            "title": f"Product {start_id + i}",
            "vendor": "Acme" if i % 2 else "Globex",
            "product_type": "Widget",
            "status": "active",
            "tags": "sale, new",
            "variants": [{"id": 90000 + i, "price": "10.00"}],
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-02T00:00:00Z",
        }
        for i in range(count)
    ]


def make_orders(count: int, start_id: int = 1, created_at: str = "2024-03-01T10:00:00Z") -> List[dict]:
    return [
        {
            "id": start_id + i,
            "name": f"#{1000 + start_id + i}",
            "email": f"buyer{start_id + i}@example.com",
            "total_price": "25.00",
            "currency": "USD",
            "financial_status": "paid",
            "fulfillment_status": None,
            "created_at": created_at,
            "line_items": [{"product_id": 1, "title": "Product 1", "price": "12.50", "quantity": 2}],
        }
        for i in range(count)
    ]


def make_customers(count: int, start_id: int = 1) -> List[dict]:
    return [
        {
            "id": start_id + i,
            "first_name": "Jane",
            "last_name": f"Doe {start_id + i}",
            "email": f"jane{start_id + i}@example.com",
            "orders_count": i,
            "total_spent": f"{i * 10}.00",
            "state": "enabled",
        }
        for i in range(count)
    ]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def shop(db):
    """A registered shop with a stored token"""
    row = Shop(shopify_shop_id=1001, domain=SHOP, name="Test Store", access_token=TOKEN)
    db.add(row)
    db.commit()
    return row


@pytest.fixture(autouse=True)
def clear_response_cache():
    response_cache.clear()
    yield
    response_cache.clear()
