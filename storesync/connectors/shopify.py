"""
Shopify Connector

Pages products, orders and customers out of the Shopify Admin REST API
using since_id cursors. One connector instance is bound to one shop and its
access token; it never touches the database.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from storesync.config import get_settings
from storesync.utils.logger import log
from storesync.utils.retry import RetryStats, retry_while_rate_limited

settings = get_settings()

MAX_PAGE_SIZE = 250  # Hard cap imposed by the Admin API
START_CURSOR = 0

RESOURCE_TYPES = ("products", "orders", "customers")

# Field projections keep payloads small and define what gets mirrored
RESOURCE_FIELDS: Dict[str, str] = {
    "products": (
        "id,title,vendor,product_type,handle,status,tags,body_html,variants,images,"
        "created_at,updated_at,published_at"
    ),
    "orders": (
        "id,name,email,total_price,subtotal_price,total_tax,currency,financial_status,"
        "fulfillment_status,created_at,updated_at,cancelled_at,customer,shipping_address,"
        "line_items,shipping_lines,fulfillments,tags,note,processing_method"
    ),
    "customers": (
        "id,first_name,last_name,email,phone,created_at,updated_at,orders_count,total_spent,"
        "last_order_id,last_order_name,verified_email,accepts_marketing,tags,state,note,addresses"
    ),
}

# Extra query params sent with every page request
RESOURCE_PARAMS: Dict[str, Dict[str, str]] = {
    "orders": {"status": "any"},  # open, closed and cancelled
}


class ShopifyAPIError(Exception):
    """Non-retryable failure talking to the Admin API"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ShopifyRateLimitError(ShopifyAPIError):
    """HTTP 429 Too Many Requests"""

    def __init__(self, message: str = "Too many requests"):
        super().__init__(message, status_code=429)


def _is_rate_limited(error: Exception) -> bool:
    return isinstance(error, ShopifyRateLimitError)


@dataclass
class Page:
    """One page of raw records plus the cursor to request the next one"""
    records: List[Dict[str, Any]]
    cursor: int  # since_id this page was requested with
    next_cursor: int
    is_last_page: bool
    retry_stats: RetryStats = field(default_factory=RetryStats)


class ShopifyConnector:
    """
    Connector for the Shopify Admin API

    Args:
        shop_domain: Shop domain (e.g., "my-store.myshopify.com")
        access_token: Admin API access token
        api_version: API version to use
        transport: Optional httpx transport (tests use httpx.MockTransport)
        rate_limit_backoff: Seconds to wait after a 429 before retrying
        page_delay: Courtesy delay between successful pages
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limit_backoff: Optional[float] = None,
        page_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.shop_domain = shop_domain.replace("https://", "").replace("http://", "").rstrip("/")
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.base_url = f"https://{self.shop_domain}/admin/api/{self.api_version}"
        self.transport = transport
        self.rate_limit_backoff = (
            settings.rate_limit_backoff_seconds if rate_limit_backoff is None else rate_limit_backoff
        )
        self.page_delay = settings.page_delay_seconds if page_delay is None else page_delay
        self.timeout = settings.http_timeout_seconds if timeout is None else timeout
        self._sleep = sleep

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Shopify API requests"""
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json"
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single GET; maps 429 to ShopifyRateLimitError and other failures to ShopifyAPIError."""
        url = f"{self.base_url}/{path}"
        try:
            async with self._client() as client:
                response = await client.get(url, params=params, headers=self._get_headers())
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"Request to {url} failed: {e}") from e

        if response.status_code == 429:
            # Retry-After is ignored; the backoff is fixed
            raise ShopifyRateLimitError(f"Too many requests for {path}")

        if response.status_code != 200:
            raise ShopifyAPIError(
                f"Shopify returned {response.status_code} for {path}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ShopifyAPIError(f"Invalid JSON from {path}: {e}", status_code=response.status_code) from e

    async def fetch_shop(self) -> Dict[str, Any]:
        """Fetch shop metadata (GET shop.json)"""
        data = await retry_while_rate_limited(
            lambda: self._get_json("shop.json"),
            is_rate_limited=_is_rate_limited,
            backoff_seconds=self.rate_limit_backoff,
            sleep=self._sleep,
            operation_name=f"{self.shop_domain} shop",
        )
        shop = data.get("shop")
        if not shop:
            raise ShopifyAPIError(f"No shop payload returned for {self.shop_domain}")
        return shop

    async def fetch_page(
        self,
        resource_type: str,
        since_id: int = START_CURSOR,
        limit: int = MAX_PAGE_SIZE,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> Page:
        """
        Fetch one page of a resource collection.

        A 429 leaves the cursor where it is and retries the identical request
        after a fixed backoff, indefinitely. Any other failure raises.

        Args:
            resource_type: products, orders or customers
            since_id: Return records with id greater than this
            limit: Page size, 1..250
            extra_params: Additional query params (e.g. created_at_min)

        Returns:
            Page with the records, next cursor and terminal flag
        """
        if resource_type not in RESOURCE_TYPES:
            raise ValueError(f"Unknown resource type: {resource_type}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"Page size must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
        if since_id < START_CURSOR:
            raise ValueError(f"Cursor cannot be negative: {since_id}")

        params: Dict[str, Any] = {
            "limit": limit,
            "since_id": since_id,
            "fields": RESOURCE_FIELDS[resource_type],
        }
        params.update(RESOURCE_PARAMS.get(resource_type, {}))
        if extra_params:
            params.update(extra_params)

        stats = RetryStats()
        data = await retry_while_rate_limited(
            lambda: self._get_json(f"{resource_type}.json", params=params),
            is_rate_limited=_is_rate_limited,
            backoff_seconds=self.rate_limit_backoff,
            sleep=self._sleep,
            stats=stats,
            operation_name=f"{self.shop_domain} {resource_type} since_id={since_id}",
        )

        records = data.get(resource_type) or []
        next_cursor = since_id
        for record in records:
            record_id = record.get("id")
            if isinstance(record_id, int) and record_id > next_cursor:
                next_cursor = record_id

        return Page(
            records=records,
            cursor=since_id,
            next_cursor=next_cursor,
            is_last_page=len(records) < limit,
            retry_stats=stats,
        )

    async def iter_pages(
        self,
        resource_type: str,
        since_id: int = START_CURSOR,
        limit: int = MAX_PAGE_SIZE,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Page]:
        """
        Yield pages until a short or empty page arrives.

        Each request uses the highest id seen on the previous page as its
        since_id, so the cursor never moves backwards.
        """
        cursor = since_id
        page_number = 0

        while True:
            page = await self.fetch_page(resource_type, cursor, limit, extra_params)
            page_number += 1

            if not page.records:
                log.debug(f"{self.shop_domain} {resource_type}: empty page at since_id={cursor}")
                return

            log.info(
                f"Fetched {len(page.records)} {resource_type} for {self.shop_domain} "
                f"(page {page_number}, since_id={cursor})"
            )
            yield page

            if page.is_last_page:
                return

            if page.next_cursor <= cursor:
                # Records without usable ids; following the cursor would loop
                raise ShopifyAPIError(
                    f"Cursor did not advance for {resource_type} on {self.shop_domain} at since_id={cursor}"
                )
            cursor = page.next_cursor

            await self._sleep(self.page_delay)
