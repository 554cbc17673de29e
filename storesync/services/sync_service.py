"""
Shopify Sync Service
Orchestrates per-shop syncs: products, then orders, then customers.

Each shop can have at most one sync in flight. The guard is taken before any
database or network work and released in a finally block, so it is freed on
both success and failure paths. A second request for a busy shop is turned
away immediately rather than queued.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from storesync.config import get_settings
from storesync.connectors.shopify import RESOURCE_TYPES, ShopifyConnector
from storesync.models.base import SessionLocal
from storesync.models.shopify import Shop
from storesync.services.persistence import upsert_records, upsert_shop
from storesync.services.sync_guard import InFlightGuard
from storesync.services.sync_status import SyncStatusTracker
from storesync.utils.logger import log
from storesync.utils.response_cache import ResponseCache, analytics_key_prefix, response_cache

settings = get_settings()

SYNC_IN_PROGRESS_MESSAGE = "Sync already in progress"

ConnectorFactory = Callable[[str, str], ShopifyConnector]


class ShopNotFoundError(LookupError):
    """No Shop row exists for the requested domain"""

    def __init__(self, shop_domain: str):
        super().__init__(f"Shop not found in database: {shop_domain}")
        self.shop_domain = shop_domain


class MissingCredentialError(ValueError):
    """Neither the request nor the Shop row carries an access token"""

    def __init__(self, shop_domain: str):
        super().__init__(f"No access token available for {shop_domain}")
        self.shop_domain = shop_domain


@dataclass
class ResourceSyncResult:
    """Result of syncing one resource type for one shop"""
    resource_type: str
    success: bool
    count: int = 0
    failed: int = 0
    pages: int = 0
    last_cursor: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "count": self.count,
            "failed": self.failed,
            "pages": self.pages,
            "last_cursor": self.last_cursor,
            "error": self.error,
        }


@dataclass
class SyncOutcome:
    """Result of one on-demand or scheduled shop sync"""
    shop_domain: str
    success: bool
    message: str = ""
    already_in_progress: bool = False
    results: Dict[str, ResourceSyncResult] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def total_records(self) -> int:
        return sum(r.count for r in self.results.values())

    @property
    def total_failed(self) -> int:
        return sum(r.failed for r in self.results.values())

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "already_in_progress": self.already_in_progress,
            "total_records": self.total_records,
            "total_failed": self.total_failed,
            "duration_seconds": round(self.duration_seconds, 2),
            "results": {name: r.to_dict() for name, r in self.results.items()},
        }


class ShopifySyncService:
    """
    Multi-tenant sync orchestrator

    Args:
        session_factory: Callable returning a new SQLAlchemy session
        connector_factory: Builds a connector for (shop_domain, access_token)
        guard: In-flight guard; a fresh one is created when omitted
        cache: Response cache invalidated after successful syncs
        shop_delay: Pause between shops on the recent-orders pass
        recent_orders_window: How far back the recent-orders pass looks
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        connector_factory: ConnectorFactory = ShopifyConnector,
        guard: Optional[InFlightGuard] = None,
        cache: Optional[ResponseCache] = None,
        shop_delay: Optional[float] = None,
        recent_orders_window: Optional[timedelta] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.connector_factory = connector_factory
        self.guard = guard or InFlightGuard()
        self.cache = cache if cache is not None else response_cache
        self.shop_delay = settings.shop_delay_seconds if shop_delay is None else shop_delay
        self.recent_orders_window = recent_orders_window or timedelta(
            hours=settings.recent_orders_window_hours
        )
        self._sleep = sleep

    # ── Tenants ──────────────────────────────────────────

    def _list_shops(self) -> List[Shop]:
        db = self.session_factory()
        try:
            shops = db.query(Shop).order_by(Shop.id).all()
            db.expunge_all()
            return shops
        finally:
            db.close()

    def _resolve_credential(self, shop_domain: str, access_token: Optional[str]) -> str:
        """Find the token to sync with, before any network call is made."""
        db = self.session_factory()
        try:
            shop = db.query(Shop).filter(Shop.domain == shop_domain).first()
        finally:
            db.close()

        if shop is None:
            raise ShopNotFoundError(shop_domain)

        token = access_token or shop.access_token
        if not token:
            raise MissingCredentialError(shop_domain)
        return token

    async def register_shop(self, shop_domain: str, access_token: str) -> dict:
        """
        Fetch shop.json with the given token and store the tenant.

        Returns:
            Shop metadata dict (without the token)
        """
        connector = self.connector_factory(shop_domain, access_token)
        shop_data = await connector.fetch_shop()

        db = self.session_factory()
        try:
            shop = upsert_shop(db, shop_domain, shop_data, access_token=access_token)
            return shop.to_dict()
        finally:
            db.close()

    # ── Resource sync ────────────────────────────────────

    async def sync_resource(
        self,
        connector: ShopifyConnector,
        shop_domain: str,
        resource_type: str,
    ) -> ResourceSyncResult:
        """
        Page one resource type into the local store and track its status.

        Never raises: failures end up in sync status and in the result.
        """
        result = ResourceSyncResult(resource_type=resource_type, success=False)
        db = self.session_factory()
        tracker = SyncStatusTracker(db)
        log.info(f"Syncing {resource_type} for {shop_domain}")

        try:
            tracker.mark_started(shop_domain, resource_type)

            async for page in connector.iter_pages(resource_type, limit=settings.sync_page_size):
                result.pages += 1
                for upsert in upsert_records(db, resource_type, shop_domain, page.records):
                    if upsert.ok:
                        result.count += 1
                    else:
                        result.failed += 1

                result.last_cursor = page.next_cursor
                tracker.record_cursor(shop_domain, resource_type, page.next_cursor)

            tracker.mark_completed(shop_domain, resource_type, result.count, result.failed)
            result.success = True

        except Exception as e:
            result.error = str(e) or type(e).__name__
            try:
                tracker.mark_errored(shop_domain, resource_type, result.error)
            except Exception as status_error:
                log.error(f"Could not record failure for {shop_domain}/{resource_type}: {status_error}")

        finally:
            db.close()

        return result

    # ── Shop sync ────────────────────────────────────────

    async def sync_shop(
        self,
        shop_domain: str,
        access_token: Optional[str] = None,
        resource_types: Sequence[str] = RESOURCE_TYPES,
    ) -> SyncOutcome:
        """
        Sync the given resource types for one shop, strictly in order.

        Returns an "already in progress" outcome without touching the
        network when the shop is busy. Raises ShopNotFoundError or
        MissingCredentialError before any fetch when the shop cannot be
        synced at all.
        """
        if not self.guard.try_acquire(shop_domain):
            log.info(f"Sync already in progress for {shop_domain}")
            return SyncOutcome(
                shop_domain=shop_domain,
                success=False,
                message=SYNC_IN_PROGRESS_MESSAGE,
                already_in_progress=True,
            )

        start = time.time()
        try:
            token = self._resolve_credential(shop_domain, access_token)
            connector = self.connector_factory(shop_domain, token)

            log.info(f"Starting sync for shop {shop_domain}: {', '.join(resource_types)}")

            outcome = SyncOutcome(shop_domain=shop_domain, success=True)
            for resource_type in resource_types:
                outcome.results[resource_type] = await self.sync_resource(
                    connector, shop_domain, resource_type
                )

            outcome.success = all(r.success for r in outcome.results.values())
            outcome.message = "Sync completed" if outcome.success else "Sync completed with errors"
            outcome.duration_seconds = time.time() - start

            self.cache.invalidate(analytics_key_prefix(shop_domain))

            log.info(
                f"Completed sync for {shop_domain}: {outcome.total_records} records, "
                f"{outcome.total_failed} failed, {outcome.duration_seconds:.1f}s"
            )
            return outcome

        finally:
            self.guard.release(shop_domain)

    async def force_sync(
        self,
        shop_domain: str,
        resource_type: str = "all",
        access_token: Optional[str] = None,
    ) -> SyncOutcome:
        """On-demand sync of every resource ("all") or a single named one."""
        if resource_type == "all":
            resource_types = RESOURCE_TYPES
        elif resource_type in RESOURCE_TYPES:
            resource_types = (resource_type,)
        else:
            raise ValueError(f"Invalid resource type: {resource_type}")

        log.info(f"Force syncing {resource_type} for {shop_domain}")
        return await self.sync_shop(shop_domain, access_token, resource_types)

    # ── Scheduled ticks ──────────────────────────────────

    async def sync_all_shops(self) -> dict:
        """
        Full sync for every known shop, one after another.

        Shops already in flight are skipped, as are shops that cannot be
        synced (no credential); neither stops the tick.
        """
        shops = self._list_shops()
        log.info(f"Found {len(shops)} shops to sync")

        summary = {"shops": len(shops), "synced": [], "skipped": [], "failed": []}

        for shop in shops:
            if self.guard.is_held(shop.domain):
                log.info(f"Sync already in progress for {shop.domain}")
                summary["skipped"].append(shop.domain)
                continue

            try:
                outcome = await self.sync_shop(shop.domain)
            except (ShopNotFoundError, MissingCredentialError) as e:
                log.warning(f"Skipping {shop.domain}: {e}")
                summary["skipped"].append(shop.domain)
                continue
            except Exception as e:
                log.error(f"Error syncing shop {shop.domain}: {str(e)}")
                summary["failed"].append(shop.domain)
                continue

            if outcome.already_in_progress:
                summary["skipped"].append(shop.domain)
            elif outcome.success:
                summary["synced"].append(shop.domain)
            else:
                summary["failed"].append(shop.domain)

        return summary

    async def sync_recent_orders(self) -> dict:
        """
        Pull orders created inside the trailing window for every shop.

        Best effort: per-shop errors are logged and skipped.
        """
        # NOTE: this pass neither checks nor takes the in-flight guard and
        # never writes sync status, so it can overlap a full sync of the same
        # shop's orders. Both paths upsert whole records keyed on the order id,
        # so the later write wins.
        created_at_min = (
            datetime.now(timezone.utc) - self.recent_orders_window
        ).isoformat(timespec="seconds")

        shops = self._list_shops()
        summary: Dict[str, int] = {}

        for index, shop in enumerate(shops):
            if index:
                await self._sleep(self.shop_delay)

            if not shop.access_token:
                log.warning(f"Skipping recent orders for {shop.domain}: no access token")
                continue

            log.info(f"Syncing recent orders for {shop.domain}")
            synced = 0
            db = self.session_factory()
            try:
                connector = self.connector_factory(shop.domain, shop.access_token)
                async for page in connector.iter_pages(
                    "orders",
                    limit=settings.sync_page_size,
                    extra_params={"created_at_min": created_at_min},
                ):
                    results = upsert_records(db, "orders", shop.domain, page.records)
                    synced += sum(1 for r in results if r.ok)
                log.info(f"Synced {synced} recent orders for {shop.domain}")
            except Exception as e:
                log.error(f"Error syncing recent orders for {shop.domain}: {str(e)}")
            finally:
                db.close()

            summary[shop.domain] = synced

        return summary

    # ── Status ───────────────────────────────────────────

    def get_sync_status(self, shop_domain: str) -> Dict[str, dict]:
        db = self.session_factory()
        try:
            return SyncStatusTracker(db).get_status(shop_domain)
        finally:
            db.close()

    def is_syncing(self, shop_domain: str) -> bool:
        return self.guard.is_held(shop_domain)
