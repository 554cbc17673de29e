"""
Shared request dependencies
"""
from fastapi import Request

from storesync.services.sync_service import ShopifySyncService


def get_sync_service(request: Request) -> ShopifySyncService:
    """The orchestrator created at startup; one per app so its guard is shared."""
    return request.app.state.sync_service
