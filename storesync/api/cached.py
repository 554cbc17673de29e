"""
Cached data endpoints

Serve the locally mirrored Shopify data to the dashboard UI. Reads never
hit Shopify; POST /sync/{shop} is the only route that does.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storesync.api.deps import get_sync_service
from storesync.models.base import get_db
from storesync.services.cached_data_service import CachedDataService, MAX_PAGE_SIZE
from storesync.services.sync_service import (
    MissingCredentialError,
    ShopifySyncService,
    ShopNotFoundError,
)
from storesync.utils.helpers import normalize_shop_domain
from storesync.utils.logger import log

router = APIRouter(prefix="/api/cached", tags=["cached"])


class SyncRequest(BaseModel):
    resource_type: Literal["all", "products", "orders", "customers"] = "all"
    access_token: Optional[str] = None


@router.get("/products/{shop_domain}")
def get_products(
    shop_domain: str,
    page: int = Query(1, ge=1),
    limit: int = Query(MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = "",
    vendor: str = "",
    product_type: str = "",
    status: str = "",
    sort: str = "title",
    order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    """Products page with vendor / type / status filters"""
    try:
        service = CachedDataService(db)
        return service.get_products(
            normalize_shop_domain(shop_domain),
            page=page, limit=limit, search=search, vendor=vendor,
            product_type=product_type, status=status, sort=sort, order=order,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error fetching cached products: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch products from cache")


@router.get("/orders/{shop_domain}")
def get_orders(
    shop_domain: str,
    page: int = Query(1, ge=1),
    limit: int = Query(MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = "",
    financial_status: str = "",
    fulfillment_status: str = "",
    date_from: str = Query("", description="ISO date or datetime, inclusive"),
    date_to: str = Query("", description="ISO date (whole day included) or datetime, inclusive"),
    sort: str = "created_at",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    """Orders page plus revenue aggregates over the filtered set"""
    try:
        service = CachedDataService(db)
        return service.get_orders(
            normalize_shop_domain(shop_domain),
            page=page, limit=limit, search=search,
            financial_status=financial_status, fulfillment_status=fulfillment_status,
            date_from=date_from, date_to=date_to, sort=sort, order=order,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error fetching cached orders: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch orders from cache")


@router.get("/customers/{shop_domain}")
def get_customers(
    shop_domain: str,
    page: int = Query(1, ge=1),
    limit: int = Query(MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = "",
    state: str = "",
    min_orders: Optional[int] = Query(None, ge=0),
    max_orders: Optional[int] = Query(None, ge=0),
    min_spent: Optional[float] = Query(None, ge=0),
    max_spent: Optional[float] = Query(None, ge=0),
    sort: str = "created_at",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    """Customers page plus spend aggregates over the filtered set"""
    try:
        service = CachedDataService(db)
        return service.get_customers(
            normalize_shop_domain(shop_domain),
            page=page, limit=limit, search=search, state=state,
            min_orders=min_orders, max_orders=max_orders,
            min_spent=min_spent, max_spent=max_spent, sort=sort, order=order,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error fetching cached customers: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch customers from cache")


@router.get("/shop/{shop_domain}")
def get_shop(shop_domain: str, db: Session = Depends(get_db)):
    try:
        shop = CachedDataService(db).get_shop(normalize_shop_domain(shop_domain))
    except Exception as e:
        log.error(f"Error fetching shop info: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch shop information")

    if shop is None:
        raise HTTPException(status_code=404, detail="Shop not found")
    return shop


@router.get("/sync-status/{shop_domain}")
def get_sync_status(shop_domain: str, db: Session = Depends(get_db)):
    try:
        return CachedDataService(db).get_sync_status(normalize_shop_domain(shop_domain))
    except Exception as e:
        log.error(f"Error fetching sync status: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch sync status")


@router.post("/sync/{shop_domain}")
async def force_sync(
    shop_domain: str,
    body: Optional[SyncRequest] = None,
    sync_service: ShopifySyncService = Depends(get_sync_service),
):
    """
    Run a sync now and wait for it.

    Example: POST /api/cached/sync/my-store.myshopify.com {"resource_type": "orders"}
    """
    body = body or SyncRequest()
    domain = normalize_shop_domain(shop_domain)
    try:
        outcome = await sync_service.force_sync(domain, body.resource_type, body.access_token)
    except ShopNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MissingCredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error running sync for {domain}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to run sync")

    return {
        "message": outcome.message,
        "shop_domain": domain,
        "resource_type": body.resource_type,
        "result": outcome.to_dict(),
    }


@router.get("/analytics/{shop_domain}")
def get_analytics(
    shop_domain: str,
    period: Literal["7d", "30d", "90d"] = "30d",
    db: Session = Depends(get_db),
):
    """Dashboard analytics (cached for 5 minutes per shop and period)"""
    try:
        return CachedDataService(db).get_analytics(normalize_shop_domain(shop_domain), period)
    except Exception as e:
        log.error(f"Error fetching analytics: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch analytics data")
