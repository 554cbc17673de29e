"""
Shop registration endpoints
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from storesync.api.deps import get_sync_service
from storesync.connectors.shopify import ShopifyAPIError
from storesync.services.sync_service import ShopifySyncService
from storesync.utils.helpers import normalize_shop_domain
from storesync.utils.logger import log

router = APIRouter(prefix="/api/shops", tags=["shops"])


class ShopRegistration(BaseModel):
    shop: str = Field(..., min_length=1, description="my-store or my-store.myshopify.com")
    access_token: str = Field(..., min_length=1)


async def _initial_sync(sync_service: ShopifySyncService, shop_domain: str):
    """Background task: first full sync for a newly connected shop."""
    try:
        outcome = await sync_service.force_sync(shop_domain, "all")
        log.info(f"Initial sync for {shop_domain}: {outcome.message}")
    except Exception as e:
        log.error(f"Initial sync for {shop_domain} failed: {str(e)}")


@router.post("")
async def register_shop(
    registration: ShopRegistration,
    background_tasks: BackgroundTasks,
    sync_service: ShopifySyncService = Depends(get_sync_service),
):
    """
    Connect a shop: verify the token against shop.json, store the shop and
    its token, then start a full sync in the background.
    """
    shop_domain = normalize_shop_domain(registration.shop)

    try:
        shop = await sync_service.register_shop(shop_domain, registration.access_token)
    except ShopifyAPIError as e:
        log.warning(f"Could not register {shop_domain}: {str(e)}")
        if e.status_code in (401, 403, 404):
            raise HTTPException(status_code=400, detail="Invalid shop domain or access token")
        raise HTTPException(status_code=502, detail="Shopify request failed")
    except Exception as e:
        log.error(f"Error registering shop {shop_domain}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to store shop")

    background_tasks.add_task(_initial_sync, sync_service, shop_domain)

    return {
        "message": "Shop connected, initial sync started",
        "shop_domain": shop_domain,
        "shop": shop,
    }
