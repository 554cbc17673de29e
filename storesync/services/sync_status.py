"""
Sync Status Tracker

Persists start / completion / error state per (shop, resource type). A
failed run never clears the last successful completion time.
"""
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from storesync.config import get_settings
from storesync.models.sync_status import SyncStatus
from storesync.services.persistence import upsert_statement
from storesync.utils.helpers import utcnow
from storesync.utils.logger import log

settings = get_settings()

_KEY_COLUMNS = ["shop_domain", "resource_type"]


class SyncStatusTracker:
    """Records sync phase transitions for one database session"""

    def __init__(self, db: Session, next_sync_interval: Optional[timedelta] = None):
        self.db = db
        self.next_sync_interval = next_sync_interval or timedelta(
            minutes=settings.full_sync_interval_minutes
        )

    def _write(self, shop_domain: str, resource_type: str, insert_values: Dict, update_values: Dict):
        values = {"shop_domain": shop_domain, "resource_type": resource_type, **insert_values}
        update_values = {**update_values, "updated_at": values["updated_at"]}
        try:
            self.db.execute(
                upsert_statement(self.db, SyncStatus, values, _KEY_COLUMNS, update_values)
            )
            self.db.commit()
        except Exception as e:
            log.error(f"Error updating sync status for {shop_domain}/{resource_type}: {str(e)}")
            self.db.rollback()
            raise

    def mark_started(self, shop_domain: str, resource_type: str):
        """Flag the pair as running; repeat calls update the same row."""
        now = utcnow()
        fields = {
            "last_sync_started": now,
            "last_sync_page_cursor": 0,
            "is_running": True,
            "updated_at": now,
        }
        self._write(
            shop_domain,
            resource_type,
            insert_values={**fields, "total_records": 0, "records_failed": 0},
            update_values=fields,
        )
        log.info(f"Started {resource_type} sync for {shop_domain}")

    def record_cursor(self, shop_domain: str, resource_type: str, cursor: int):
        """Persist pagination progress after a page has been stored."""
        now = utcnow()
        fields = {"last_sync_page_cursor": cursor, "updated_at": now}
        self._write(shop_domain, resource_type, insert_values=fields, update_values=fields)

    def mark_completed(
        self,
        shop_domain: str,
        resource_type: str,
        total_records: int,
        records_failed: int = 0,
    ):
        """Record a successful run and schedule the next one."""
        now = utcnow()
        fields = {
            "last_sync_completed": now,
            "total_records": total_records,
            "records_failed": records_failed,
            "is_running": False,
            "error_message": None,
            "next_scheduled_sync": now + self.next_sync_interval,
            "updated_at": now,
        }
        self._write(shop_domain, resource_type, insert_values=fields, update_values=fields)
        log.info(
            f"Completed {resource_type} sync for {shop_domain}: "
            f"{total_records} records ({records_failed} failed)"
        )

    def mark_errored(self, shop_domain: str, resource_type: str, message: str):
        """Record a failed run. last_sync_completed is left as it was."""
        now = utcnow()
        fields = {
            "is_running": False,
            "error_message": (message or "Unknown error")[:2000],
            "updated_at": now,
        }
        self._write(shop_domain, resource_type, insert_values=fields, update_values=fields)
        log.error(f"{resource_type} sync failed for {shop_domain}: {message}")

    def get_status(self, shop_domain: str) -> Dict[str, dict]:
        """Map of resource type to its latest status view."""
        rows = self.db.query(SyncStatus).filter(SyncStatus.shop_domain == shop_domain).all()
        return {row.resource_type: row.to_dict() for row in rows}
