"""
Sync status model

One row per (shop, resource type), always holding the latest attempt.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, BigInteger, UniqueConstraint
from storesync.utils.helpers import utcnow

from storesync.models.base import Base


class SyncStatus(Base):
    """
    Track sync progress for each shop / resource pair

    Monitors start and completion times, record counts and the last error
    """
    __tablename__ = "sync_status"
    __table_args__ = (
        UniqueConstraint("shop_domain", "resource_type", name="uq_sync_status_shop_resource"),
    )

    id = Column(Integer, primary_key=True, index=True)

    shop_domain = Column(String, index=True, nullable=False)
    resource_type = Column(String, nullable=False)  # products, orders, customers

    last_sync_started = Column(DateTime, nullable=True)
    last_sync_completed = Column(DateTime, nullable=True)  # Only written on success
    last_sync_page_cursor = Column(BigInteger, default=0)  # since_id reached so far

    total_records = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    is_running = Column(Boolean, default=False, index=True)
    error_message = Column(Text, nullable=True)
    next_scheduled_sync = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "last_sync_started": self.last_sync_started,
            "last_sync_completed": self.last_sync_completed,
            "last_sync_page_cursor": self.last_sync_page_cursor,
            "total_records": self.total_records,
            "records_failed": self.records_failed,
            "is_running": self.is_running,
            "error_message": self.error_message,
            "next_scheduled_sync": self.next_scheduled_sync,
        }
