"""
Tests for sync status tracking per (shop, resource type).
"""
from datetime import timedelta

from storesync.models.sync_status import SyncStatus
from storesync.services.sync_status import SyncStatusTracker

from conftest import SHOP


def _row(db, resource_type="products"):
    db.expire_all()
    return db.query(SyncStatus).filter_by(shop_domain=SHOP, resource_type=resource_type).one()


class TestLifecycle:

    def test_first_start_creates_running_row(self, db):
        SyncStatusTracker(db).mark_started(SHOP, "products")

        row = _row(db)
        assert row.is_running is True
        assert row.last_sync_started is not None
        assert row.last_sync_completed is None
        assert row.total_records == 0

    def test_repeat_start_updates_same_row(self, db):
        tracker = SyncStatusTracker(db)
        tracker.mark_started(SHOP, "products")
        tracker.mark_started(SHOP, "products")
        assert db.query(SyncStatus).count() == 1

    def test_completion_records_totals_and_schedules_next(self, db):
        tracker = SyncStatusTracker(db, next_sync_interval=timedelta(minutes=30))
        tracker.mark_started(SHOP, "orders")
        tracker.record_cursor(SHOP, "orders", 250)
        tracker.mark_completed(SHOP, "orders", total_records=290, records_failed=2)

        row = _row(db, "orders")
        assert row.is_running is False
        assert row.total_records == 290
        assert row.records_failed == 2
        assert row.last_sync_page_cursor == 250
        assert row.next_scheduled_sync - row.last_sync_completed == timedelta(minutes=30)

    def test_start_resets_cursor(self, db):
        tracker = SyncStatusTracker(db)
        tracker.mark_started(SHOP, "orders")
        tracker.record_cursor(SHOP, "orders", 900)
        tracker.mark_started(SHOP, "orders")
        assert _row(db, "orders").last_sync_page_cursor == 0


class TestFailures:

    def test_error_keeps_last_successful_completion(self, db):
        tracker = SyncStatusTracker(db)
        tracker.mark_started(SHOP, "customers")
        tracker.mark_completed(SHOP, "customers", total_records=10)
        completed = _row(db, "customers").last_sync_completed

        tracker.mark_started(SHOP, "customers")
        tracker.mark_errored(SHOP, "customers", "Shopify returned 500")

        row = _row(db, "customers")
        assert row.is_running is False
        assert row.error_message == "Shopify returned 500"
        assert row.last_sync_completed == completed
        assert row.total_records == 10

    def test_success_clears_previous_error(self, db):
        tracker = SyncStatusTracker(db)
        tracker.mark_started(SHOP, "products")
        tracker.mark_errored(SHOP, "products", "boom")
        tracker.mark_started(SHOP, "products")
        tracker.mark_completed(SHOP, "products", total_records=1)
        assert _row(db).error_message is None

    def test_long_messages_are_truncated(self, db):
        SyncStatusTracker(db).mark_errored(SHOP, "products", "x" * 5000)
        assert len(_row(db).error_message) == 2000


class TestGetStatus:

    def test_map_keyed_by_resource(self, db):
        tracker = SyncStatusTracker(db)
        tracker.mark_started(SHOP, "products")
        tracker.mark_completed(SHOP, "products", total_records=3)
        tracker.mark_started(SHOP, "orders")
        tracker.mark_started("other-store.myshopify.com", "orders")

        status = tracker.get_status(SHOP)

        assert set(status) == {"products", "orders"}
        assert status["products"]["total_records"] == 3
        assert status["orders"]["is_running"] is True
        assert "last_sync_page_cursor" in status["orders"]

    def test_unknown_shop_is_empty(self, db):
        assert SyncStatusTracker(db).get_status("nobody.myshopify.com") == {}
