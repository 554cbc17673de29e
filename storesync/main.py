"""
Storefront Sync Service
Main FastAPI application
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from storesync import __version__
from storesync.api import cached, health, shops
from storesync.config import get_settings
from storesync.scheduler import SyncScheduler
from storesync.services.sync_service import ShopifySyncService
from storesync.utils.logger import log

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    try:
        from storesync.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    if app.state.enable_scheduler:
        try:
            app.state.sync_scheduler.start()
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    app.state.sync_scheduler.stop()
    log.info("Shutting down application")


def create_app(
    sync_service: Optional[ShopifySyncService] = None,
    enable_scheduler: Optional[bool] = None,
) -> FastAPI:
    """
    Build the application with one orchestrator shared by the API routes and
    the scheduler, so on-demand and scheduled syncs see the same guard.
    """
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="""
    Multi-tenant Shopify data mirror

    - Periodic full sync of products, orders and customers for every shop
    - Hourly pull of recently created orders
    - Cached, filterable reads and dashboard analytics from the local mirror
    """,
        lifespan=lifespan,
    )

    app.state.sync_service = sync_service or ShopifySyncService()
    app.state.sync_scheduler = SyncScheduler(app.state.sync_service)
    app.state.enable_scheduler = (
        settings.enable_scheduler if enable_scheduler is None else enable_scheduler
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Gzip compression for large listing responses
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(shops.router)
    app.include_router(cached.router)

    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "app": settings.app_name,
            "version": __version__,
            "docs": "/docs",
            "health": "/api/health",
            "endpoints": {
                "register_shop": "POST /api/shops",
                "products": "GET /api/cached/products/{shop}",
                "orders": "GET /api/cached/orders/{shop}",
                "customers": "GET /api/cached/customers/{shop}",
                "shop": "GET /api/cached/shop/{shop}",
                "sync_status": "GET /api/cached/sync-status/{shop}",
                "force_sync": "POST /api/cached/sync/{shop}",
                "analytics": "GET /api/cached/analytics/{shop}",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storesync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
