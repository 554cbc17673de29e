"""
Tests for the sync orchestrator.

Covers:
  - Full sync of a shop end to end against a fake Admin API
  - Products -> orders -> customers ordering
  - Failure isolation between resources and between shops
  - In-flight guard: overlapping requests are turned away without network calls
  - Credential resolution before any request
  - Recent-orders pass (bypasses guard and status)
  - Analytics cache invalidation
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from storesync.connectors.shopify import RESOURCE_TYPES
from storesync.models.shopify import Customer, Order, Product, Shop
from storesync.models.sync_status import SyncStatus
from storesync.services.sync_guard import InFlightGuard
from storesync.services.sync_service import (
    SYNC_IN_PROGRESS_MESSAGE,
    MissingCredentialError,
    ShopifySyncService,
    ShopNotFoundError,
)
from storesync.utils.response_cache import ResponseCache

from conftest import (
    SHOP,
    TOKEN,
    FakeShopify,
    make_customers,
    make_orders,
    make_products,
    no_sleep,
)

OTHER_SHOP = "other-store.myshopify.com"


def _service(session_factory, fake, **kwargs):
    kwargs.setdefault("cache", ResponseCache())
    return ShopifySyncService(
        session_factory=session_factory,
        connector_factory=fake.connector_factory,
        shop_delay=0,
        sleep=no_sleep,
        **kwargs,
    )


def _status(session_factory, shop_domain=SHOP):
    session = session_factory()
    try:
        return {
            row.resource_type: row
            for row in session.query(SyncStatus).filter_by(shop_domain=shop_domain).all()
        }
    finally:
        session.close()


def _count(session_factory, model, shop_domain=SHOP):
    session = session_factory()
    try:
        return session.query(model).filter_by(shop_domain=shop_domain).count()
    finally:
        session.close()


# ────────────────────────────────────────────
# FULL SYNC
# ────────────────────────────────────────────


class TestFullSync:

    def test_two_page_product_sync(self, session_factory, shop):
        """290 products arrive as 250 + 40 and are all stored and counted."""
        fake = FakeShopify({"products": make_products(290)})
        service = _service(session_factory, fake)

        outcome = asyncio.run(service.force_sync(SHOP, "products"))

        assert outcome.success
        assert outcome.results["products"].count == 290
        assert outcome.results["products"].pages == 2
        assert [r.url.params["since_id"] for r in fake.requests] == ["0", "250"]
        assert _count(session_factory, Product) == 290

        status = _status(session_factory)["products"]
        assert status.total_records == 290
        assert status.is_running is False
        assert status.last_sync_completed is not None
        assert status.last_sync_page_cursor == 290
        assert status.error_message is None

    def test_resources_run_in_order(self, session_factory, shop):
        fake = FakeShopify({
            "products": make_products(3),
            "orders": make_orders(2),
            "customers": make_customers(4),
        })
        outcome = asyncio.run(_service(session_factory, fake).force_sync(SHOP))

        resources = [r.url.path.rsplit("/", 1)[-1] for r in fake.requests]
        assert resources == ["products.json", "orders.json", "customers.json"]
        assert list(outcome.results) == list(RESOURCE_TYPES)
        assert outcome.total_records == 9
        assert set(_status(session_factory)) == set(RESOURCE_TYPES)

    def test_resync_does_not_duplicate(self, session_factory, shop):
        fake = FakeShopify({"customers": make_customers(10)})
        service = _service(session_factory, fake)

        asyncio.run(service.force_sync(SHOP, "customers"))
        asyncio.run(service.force_sync(SHOP, "customers"))

        assert _count(session_factory, Customer) == 10

    def test_rate_limited_page_still_completes(self, session_factory, shop):
        fake = FakeShopify(
            {"products": make_products(290)},
            rate_limited={("products", 250): 2},
        )
        outcome = asyncio.run(_service(session_factory, fake).force_sync(SHOP, "products"))

        assert outcome.results["products"].count == 290
        assert [r.url.params["since_id"] for r in fake.requests] == ["0", "250", "250", "250"]

    def test_bad_records_are_counted_not_fatal(self, session_factory, shop):
        records = make_products(5)
        records[2]["created_at"] = "not a date"
        fake = FakeShopify({"products": records})

        outcome = asyncio.run(_service(session_factory, fake).force_sync(SHOP, "products"))

        result = outcome.results["products"]
        assert result.success
        assert result.count == 4
        assert result.failed == 1
        assert _status(session_factory)["products"].records_failed == 1


class TestFailureIsolation:

    def test_failed_resource_does_not_stop_the_next(self, session_factory, shop):
        fake = FakeShopify(
            {"products": make_products(2), "customers": make_customers(2)},
            failures={"orders": 500},
        )
        service = _service(session_factory, fake)

        outcome = asyncio.run(service.force_sync(SHOP))

        assert not outcome.success
        assert outcome.results["products"].success
        assert not outcome.results["orders"].success
        assert "500" in outcome.results["orders"].error
        assert outcome.results["customers"].success
        assert not service.is_syncing(SHOP)

        status = _status(session_factory)
        assert status["orders"].is_running is False
        assert "500" in status["orders"].error_message
        assert status["orders"].last_sync_completed is None
        assert status["customers"].last_sync_completed is not None

    def test_failure_keeps_previous_completion(self, session_factory, shop):
        fake = FakeShopify({"orders": make_orders(3)})
        service = _service(session_factory, fake)
        asyncio.run(service.force_sync(SHOP, "orders"))
        completed = _status(session_factory)["orders"].last_sync_completed

        fake.failures["orders"] = 503
        asyncio.run(service.force_sync(SHOP, "orders"))

        status = _status(session_factory)["orders"]
        assert status.last_sync_completed == completed
        assert status.total_records == 3
        assert status.error_message


class TestForceSyncValidation:

    def test_invalid_resource_type(self, session_factory, shop):
        fake = FakeShopify()
        with pytest.raises(ValueError):
            asyncio.run(_service(session_factory, fake).force_sync(SHOP, "collections"))
        assert fake.requests == []

    def test_unknown_shop(self, session_factory):
        fake = FakeShopify()
        service = _service(session_factory, fake)
        with pytest.raises(ShopNotFoundError):
            asyncio.run(service.force_sync("ghost.myshopify.com"))
        assert fake.requests == []
        assert not service.is_syncing("ghost.myshopify.com")

    def test_missing_credential(self, session_factory, db):
        db.add(Shop(shopify_shop_id=5, domain=SHOP))
        db.commit()
        fake = FakeShopify()

        with pytest.raises(MissingCredentialError):
            asyncio.run(_service(session_factory, fake).force_sync(SHOP))
        assert fake.requests == []

    def test_supplied_token_is_used(self, session_factory, db):
        db.add(Shop(shopify_shop_id=5, domain=SHOP))
        db.commit()
        fake = FakeShopify({"products": make_products(1)})

        asyncio.run(_service(session_factory, fake).force_sync(SHOP, "products", access_token="fresh"))

        assert fake.requests[0].headers["X-Shopify-Access-Token"] == "fresh"


# ────────────────────────────────────────────
# IN-FLIGHT GUARD
# ────────────────────────────────────────────


class BlockingConnector:
    """Holds the first resource open until the test releases it."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def iter_pages(self, resource_type, **kwargs):
        self.started.set()
        await self.release.wait()
        for page in []:
            yield page


class TestInFlightGuard:

    def test_overlapping_request_is_turned_away(self, session_factory, shop):
        created = []

        async def scenario():
            connector = BlockingConnector()

            def factory(shop_domain, access_token):
                created.append(shop_domain)
                return connector

            service = ShopifySyncService(session_factory=session_factory, connector_factory=factory)

            first = asyncio.create_task(service.force_sync(SHOP, "all"))
            await connector.started.wait()

            second = await service.force_sync(SHOP, "products")
            held_during = service.is_syncing(SHOP)

            connector.release.set()
            return await first, second, held_during, service.is_syncing(SHOP)

        first, second, held_during, held_after = asyncio.run(scenario())

        assert second.already_in_progress
        assert not second.success
        assert second.message == SYNC_IN_PROGRESS_MESSAGE
        assert second.results == {}
        assert len(created) == 1
        assert held_during
        assert first.success
        assert not held_after

    def test_other_shops_are_not_blocked(self, session_factory, shop, db):
        db.add(Shop(shopify_shop_id=2002, domain=OTHER_SHOP, access_token=TOKEN))
        db.commit()
        guard = InFlightGuard()
        guard.try_acquire(SHOP)
        fake = FakeShopify({"products": make_products(1)})

        outcome = asyncio.run(
            _service(session_factory, fake, guard=guard).force_sync(OTHER_SHOP, "products")
        )

        assert outcome.success
        assert guard.is_held(SHOP)

    def test_guard_released_after_unexpected_error(self, session_factory, shop):
        def factory(shop_domain, access_token):
            raise RuntimeError("cannot build connector")

        service = ShopifySyncService(session_factory=session_factory, connector_factory=factory)
        with pytest.raises(RuntimeError):
            asyncio.run(service.force_sync(SHOP))
        assert not service.is_syncing(SHOP)


# ────────────────────────────────────────────
# SCHEDULED TICKS
# ────────────────────────────────────────────


class TestSyncAllShops:

    def test_tick_skips_busy_and_tokenless_shops(self, session_factory, shop, db):
        db.add(Shop(shopify_shop_id=2002, domain=OTHER_SHOP, access_token=TOKEN))
        db.add(Shop(shopify_shop_id=3003, domain="no-token.myshopify.com"))
        db.commit()

        guard = InFlightGuard()
        guard.try_acquire(SHOP)
        fake = FakeShopify({"products": make_products(2)})

        summary = asyncio.run(_service(session_factory, fake, guard=guard).sync_all_shops())

        assert summary["shops"] == 3
        assert summary["synced"] == [OTHER_SHOP]
        assert set(summary["skipped"]) == {SHOP, "no-token.myshopify.com"}
        assert all(r.url.host == OTHER_SHOP for r in fake.requests)
        assert _count(session_factory, Product, OTHER_SHOP) == 2
        assert _count(session_factory, Product, SHOP) == 0

    def test_failing_shop_does_not_stop_tick(self, session_factory, shop, db):
        db.add(Shop(shopify_shop_id=2002, domain=OTHER_SHOP, access_token=TOKEN))
        db.commit()
        fake = FakeShopify({"products": make_products(1)}, failures={"orders": 500})

        summary = asyncio.run(_service(session_factory, fake).sync_all_shops())

        assert summary["failed"] == [SHOP, OTHER_SHOP]
        assert _count(session_factory, Product, OTHER_SHOP) == 1


class TestRecentOrders:

    def _recent(self, hours_ago):
        return (datetime.now(timezone.utc) - timedelta(hours=hours_ago)).isoformat(timespec="seconds")

    def test_pulls_recent_orders_only(self, session_factory, shop):
        orders = make_orders(3, start_id=1, created_at="2020-01-01T00:00:00+00:00")
        orders += make_orders(2, start_id=10, created_at=self._recent(1))
        fake = FakeShopify({"orders": orders})

        summary = asyncio.run(_service(session_factory, fake).sync_recent_orders())

        assert summary == {SHOP: 2}
        assert "created_at_min" in fake.requests[0].url.params
        assert _count(session_factory, Order) == 2

    def test_ignores_guard_and_status(self, session_factory, shop):
        guard = InFlightGuard()
        guard.try_acquire(SHOP)
        fake = FakeShopify({"orders": make_orders(1, created_at=self._recent(2))})

        asyncio.run(_service(session_factory, fake, guard=guard).sync_recent_orders())

        assert len(fake.requests) == 1
        assert _status(session_factory) == {}
        assert guard.is_held(SHOP)

    def test_error_for_one_shop_is_logged_and_skipped(self, session_factory, shop):
        fake = FakeShopify(failures={"orders": 500})
        summary = asyncio.run(_service(session_factory, fake).sync_recent_orders())
        assert summary == {SHOP: 0}


# ────────────────────────────────────────────
# REGISTRATION / CACHE
# ────────────────────────────────────────────


class TestRegisterShop:

    def test_stores_shop_with_token(self, session_factory):
        fake = FakeShopify(shop={"id": 4242, "name": "New Store", "currency": "AUD"})
        shop = asyncio.run(_service(session_factory, fake).register_shop(SHOP, TOKEN))

        assert shop["name"] == "New Store"
        assert "access_token" not in shop

        session = session_factory()
        try:
            row = session.query(Shop).filter_by(domain=SHOP).one()
            assert row.access_token == TOKEN
            assert row.shopify_shop_id == 4242
        finally:
            session.close()


class TestCacheInvalidation:

    def test_sync_drops_cached_analytics(self, session_factory, shop):
        cache = ResponseCache()
        cache.set(f"analytics:{SHOP}:30d", {"stale": True})
        cache.set(f"analytics:{OTHER_SHOP}:30d", {"other": True})
        fake = FakeShopify({"orders": make_orders(1)})

        asyncio.run(_service(session_factory, fake, cache=cache).force_sync(SHOP, "orders"))

        assert cache.get(f"analytics:{SHOP}:30d") is None
        assert cache.get(f"analytics:{OTHER_SHOP}:30d") == {"other": True}
