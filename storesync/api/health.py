"""
Health check and status endpoints
"""
from fastapi import APIRouter, Request

from storesync import __version__
from storesync.config import get_settings
from storesync.models.base import check_db_health
from storesync.utils.helpers import utcnow

settings = get_settings()

router = APIRouter(prefix="/api")


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": __version__
    }


@router.get("/db-health")
def db_health():
    return check_db_health()


@router.get("/status")
async def get_status(request: Request):
    """Scheduler jobs and shops currently syncing"""
    sync_scheduler = getattr(request.app.state, "sync_scheduler", None)
    sync_service = getattr(request.app.state, "sync_service", None)
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "scheduler_running": bool(sync_scheduler and sync_scheduler.running),
        "jobs": sync_scheduler.get_scheduled_jobs() if sync_scheduler else [],
        "syncing": sorted(sync_service.guard.snapshot()) if sync_service else [],
        "timestamp": utcnow().isoformat()
    }
