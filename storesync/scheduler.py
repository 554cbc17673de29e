"""
Scheduler for periodic Shopify syncs

Two interval jobs on an APScheduler AsyncIOScheduler:
- Full sync:      every 30 minutes (products, orders, customers for every shop)
- Recent orders:  every 60 minutes (orders created in the last 24 hours)

The scheduler is owned by a SyncScheduler instance and started / stopped
with the application lifespan. Ticks can also be run directly.
"""
import asyncio
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storesync.config import get_settings
from storesync.services.sync_service import (
    MissingCredentialError,
    ShopifySyncService,
    ShopNotFoundError,
)
from storesync.utils.helpers import normalize_shop_domain
from storesync.utils.logger import log

settings = get_settings()

FULL_SYNC_JOB_ID = "full_sync"
RECENT_ORDERS_JOB_ID = "recent_orders_sync"


class SyncScheduler:
    """
    Owns the periodic sync timers for one ShopifySyncService

    Args:
        service: Orchestrator whose ticks the jobs run
        full_sync_minutes: Interval for the full sync tick
        recent_orders_minutes: Interval for the recent-orders tick
    """

    def __init__(
        self,
        service: ShopifySyncService,
        full_sync_minutes: Optional[int] = None,
        recent_orders_minutes: Optional[int] = None,
    ):
        self.service = service
        self.full_sync_minutes = full_sync_minutes or settings.full_sync_interval_minutes
        self.recent_orders_minutes = recent_orders_minutes or settings.recent_orders_interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def run_full_sync(self) -> dict:
        """Full sync tick for every shop"""
        log.info("Starting scheduled full sync...")
        try:
            summary = await self.service.sync_all_shops()
            log.info(
                f"Scheduled full sync finished: {len(summary['synced'])} synced, "
                f"{len(summary['skipped'])} skipped, {len(summary['failed'])} failed"
            )
            return summary
        except Exception as e:
            log.error(f"Scheduled full sync failed: {str(e)}")
            return {"error": str(e)}

    async def run_recent_orders(self) -> dict:
        """Recent-orders tick for every shop"""
        log.info("Starting scheduled recent orders sync...")
        try:
            return await self.service.sync_recent_orders()
        except Exception as e:
            log.error(f"Scheduled recent orders sync failed: {str(e)}")
            return {"error": str(e)}

    def _setup(self, scheduler: AsyncIOScheduler):
        scheduler.add_job(
            self.run_full_sync,
            trigger=IntervalTrigger(minutes=self.full_sync_minutes),
            id=FULL_SYNC_JOB_ID,
            name="Shopify Full Sync (all shops)",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.run_recent_orders,
            trigger=IntervalTrigger(minutes=self.recent_orders_minutes),
            id=RECENT_ORDERS_JOB_ID,
            name="Shopify Recent Orders Sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self):
        """Start the timers. Must be called with an event loop running."""
        if self.running:
            return
        self._scheduler = AsyncIOScheduler()
        self._setup(self._scheduler)
        self._scheduler.start()
        log.info(
            f"Scheduler started: full sync every {self.full_sync_minutes} min, "
            f"recent orders every {self.recent_orders_minutes} min"
        )

    def stop(self):
        """Stop the timers; running ticks are not awaited."""
        if not self.running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        log.info("Scheduler stopped")

    def get_scheduled_jobs(self) -> list:
        """
        Get list of all scheduled jobs

        Returns:
            List of job info dicts
        """
        if self._scheduler is None:
            return []

        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs


def run_command(service: ShopifySyncService, command: str, *args: str) -> dict:
    """
    Run one CLI command to completion

    Commands:
        sync <shop> [resource]   On-demand sync (resource defaults to all)
        tick                     One full-sync tick for every shop
        recent-orders            One recent-orders tick
    """
    commands: Dict[str, Callable[[], Awaitable]] = {
        "tick": service.sync_all_shops,
        "recent-orders": service.sync_recent_orders,
    }

    if command == "sync":
        if not args:
            return {"success": False, "error": "Please specify a shop domain"}
        shop_domain = normalize_shop_domain(args[0])
        resource_type = args[1] if len(args) > 1 else "all"
        try:
            outcome = asyncio.run(service.force_sync(shop_domain, resource_type))
        except (ValueError, ShopNotFoundError, MissingCredentialError) as e:
            return {"success": False, "error": str(e)}
        return {"success": outcome.success, "message": outcome.message, "result": outcome.to_dict()}

    if command not in commands:
        return {
            "success": False,
            "error": f"Unknown command: {command}. Valid options: sync, {', '.join(commands)}",
        }

    log.info(f"Manually triggering {command}...")
    result = asyncio.run(commands[command]())
    return {"success": True, "message": f"{command} finished", "result": result}


async def _serve_forever(sync_scheduler: SyncScheduler):
    sync_scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        sync_scheduler.stop()


# CLI for manual syncs

if __name__ == "__main__":
    import sys

    from storesync.models.base import init_db

    if len(sys.argv) < 2:
        print("Usage: python -m storesync.scheduler <command> [args]")
        print("\nCommands:")
        print("  start                    Run the scheduler in the foreground")
        print("  sync <shop> [resource]   Sync one shop now (products, orders, customers or all)")
        print("  tick                     Run one full sync for every shop")
        print("  recent-orders            Pull the last 24h of orders for every shop")
        sys.exit(1)

    init_db()
    sync_service = ShopifySyncService()
    command = sys.argv[1]

    if command == "start":
        print("Starting scheduler...")
        try:
            asyncio.run(_serve_forever(SyncScheduler(sync_service)))
        except (KeyboardInterrupt, SystemExit):
            print("\nShutting down scheduler...")
        sys.exit(0)

    result = run_command(sync_service, command, *sys.argv[2:])

    if result["success"]:
        print(f"✓ {result['message']}")
        print(result.get("result"))
    else:
        print(f"✗ Error: {result.get('error') or result.get('message')}")
        sys.exit(1)
