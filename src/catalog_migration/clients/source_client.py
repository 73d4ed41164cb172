"""
Source Marketplace Client

Read-only httpx client for the source store: paginated product listing and
per-product image listing.
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from catalog_migration.clients.base import BaseCatalogClient
from catalog_migration.config import CatalogSettings, catalog_settings
from catalog_migration.errors.exceptions import CatalogClientError, CatalogUnavailableError
from catalog_migration.models.catalog import SourceItem

logger = structlog.get_logger(__name__)

PRODUCTS_PATH = "/products/my-mixin-products"
IMAGES_PATH = "/images/my-mixin_image"


def _page_items(data: Any) -> list[dict[str, Any]]:
    """Listing pages come as {result: [...]}, {data: [...]} or a bare list."""
    if isinstance(data, dict):
        for key in ("result", "data"):
            if isinstance(data.get(key), list):
                return data[key]
        return []
    if isinstance(data, list):
        return data
    return []


def _total_pages(data: Any) -> Optional[int]:
    if not isinstance(data, dict):
        return None
    value = data.get("total_pages") or data.get("total_page")
    try:
        return int(value) if value else None
    except (TypeError, ValueError):
        return None


def to_source_item(raw: dict[str, Any]) -> SourceItem:
    """Validate a raw product, folding flat length/width/height into dimensions."""
    payload = dict(raw)
    dims = {k: payload.get(k) for k in ("length", "width", "height") if payload.get(k) is not None}
    if dims and "dimensions" not in payload:
        payload["dimensions"] = dims
    return SourceItem.model_validate(payload)


class SourceCatalogClient(BaseCatalogClient):
    """
    Async client for the source marketplace.

    Usage:
        async with SourceCatalogClient() as source:
            items = await source.list_all_items()
            images = await source.list_item_images(items[0].id)
    """

    service_name = "source-marketplace"

    def __init__(
        self,
        settings: Optional[CatalogSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or catalog_settings
        super().__init__(
            base_url=settings.source_url,
            token=settings.source_token,
            timeout=settings.timeout,
            transport=transport,
        )
        self.shop_url = settings.source_shop_url
        self.max_pages = settings.max_pages

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(CatalogUnavailableError),
        reraise=True,
    )
    async def _fetch_page(self, page: int) -> Any:
        response = await self._request(
            "GET",
            PRODUCTS_PATH,
            params={"mixin_url": self.shop_url, "mixin_page": page},
        )
        return response.json()

    async def list_all_items(self) -> list[SourceItem]:
        """
        Fetch every product page until an empty page, the reported last page,
        or the `max_pages` safety cap.

        Returns:
            All products that validate; malformed entries are skipped
        """
        items: list[SourceItem] = []
        skipped = 0
        page = 1

        while page <= self.max_pages:
            try:
                data = await self._fetch_page(page)
            except CatalogClientError as e:
                # Some deployments answer 404 past the last page
                if page > 1 and e.details.get("status_code") == 404:
                    break
                raise

            raw_items = _page_items(data)
            if not raw_items:
                break

            for raw in raw_items:
                try:
                    items.append(to_source_item(raw))
                except ValidationError as e:
                    skipped += 1
                    self._log.warning("source_item_invalid", raw_id=raw.get("id"), error=str(e))

            total_pages = _total_pages(data)
            if total_pages and page >= total_pages:
                break
            page += 1

        self._log.info("source_items_listed", count=len(items), pages=page, skipped=skipped)
        return items

    async def list_item_images(self, item_id: int) -> list[str]:
        """Image URLs of a product with the default image first."""
        response = await self._request(
            "GET",
            IMAGES_PATH,
            params={"url": self.shop_url, "mixin_page": 1, "mixin_product_id": item_id},
        )
        data = response.json()
        results = data.get("result") if isinstance(data, dict) else None
        if not isinstance(results, list):
            return []

        ordered = sorted(results, key=lambda img: 0 if img.get("default") else 1)
        return [img["image"] for img in ordered if img.get("image")]
