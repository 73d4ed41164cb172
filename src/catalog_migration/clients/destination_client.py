"""
Destination Marketplace Client

httpx client for the destination store: paginated vendor listing, category
detection, image upload by URL and product creation.
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from catalog_migration.clients.base import BaseCatalogClient
from catalog_migration.config import CatalogSettings, catalog_settings
from catalog_migration.errors.exceptions import CatalogClientError, CatalogUnavailableError
from catalog_migration.models.catalog import DestinationItem

logger = structlog.get_logger(__name__)

PRODUCTS_PATH = "/products/my-basalam-products/{vendor_id}"
CATEGORY_DETECTION_PATH = "/products/category-detection"
UPLOAD_IMAGE_PATH = "/products/upload-image-to-basalam"
CREATE_PRODUCT_PATH = "/products/create/basalam/{vendor_id}"


class DestinationCatalogClient(BaseCatalogClient):
    """
    Async client for the destination marketplace.

    Usage:
        async with DestinationCatalogClient() as destination:
            category_id = await destination.detect_category("Ceramic mug")
            image_id = await destination.upload_image("https://...")
            created = await destination.create_item(payload)
    """

    service_name = "destination-marketplace"

    def __init__(
        self,
        settings: Optional[CatalogSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or catalog_settings
        super().__init__(
            base_url=settings.destination_url,
            token=settings.destination_token,
            timeout=settings.timeout,
            transport=transport,
        )
        self.vendor_id = settings.destination_vendor_id
        self.max_pages = settings.max_pages

    def _vendor_path(self, template: str) -> str:
        if self.vendor_id is None:
            raise CatalogClientError("Destination vendor id is not configured (CATALOG_DESTINATION_VENDOR_ID)")
        return template.format(vendor_id=self.vendor_id)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(CatalogUnavailableError),
        reraise=True,
    )
    async def _fetch_page(self, page: int) -> Any:
        response = await self._request(
            "GET",
            self._vendor_path(PRODUCTS_PATH),
            params={"basalam_page": page},
        )
        return response.json()

    async def list_all_items(self) -> list[DestinationItem]:
        """Fetch every vendor product page (stops on empty page, last page or cap)."""
        items: list[DestinationItem] = []
        skipped = 0
        page = 1

        while page <= self.max_pages:
            data = await self._fetch_page(page)
            raw_items = data.get("data") if isinstance(data, dict) else data
            if not isinstance(raw_items, list) or not raw_items:
                break

            for raw in raw_items:
                try:
                    items.append(DestinationItem.model_validate(raw))
                except ValidationError as e:
                    skipped += 1
                    self._log.warning("destination_item_invalid", raw_id=raw.get("id"), error=str(e))

            total_pages = data.get("total_page") if isinstance(data, dict) else None
            if total_pages and page >= int(total_pages):
                break
            page += 1

        self._log.info("destination_items_listed", count=len(items), pages=page, skipped=skipped)
        return items

    async def detect_category(self, name: str) -> Optional[int]:
        """Ask the destination for the best category of `name`; None if no match."""
        response = await self._request("GET", CATEGORY_DETECTION_PATH, params={"title": name})
        data = response.json()

        category_id = None
        if isinstance(data, dict):
            category_id = data.get("category_id")
            if category_id is None and isinstance(data.get("categories"), list) and data["categories"]:
                category_id = data["categories"][0].get("id")

        self._log.debug("category_detected", name=name[:50], category_id=category_id)
        return int(category_id) if category_id is not None else None

    async def upload_image(self, url: str) -> str:
        """Have the destination fetch and store an image; returns its image id."""
        response = await self._request("POST", UPLOAD_IMAGE_PATH, json={"imageUrl": url})
        data = response.json()
        image_id = data.get("imageId") if isinstance(data, dict) else None
        if not image_id:
            raise CatalogClientError("Invalid response from image upload: imageId not found")
        return str(image_id)

    async def create_item(self, payload: dict[str, Any]) -> DestinationItem:
        """Create a product. Rejections surface as DestinationValidationError."""
        response = await self._request("POST", self._vendor_path(CREATE_PRODUCT_PATH), json=payload)
        data = response.json()
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        try:
            created = DestinationItem.model_validate(data)
        except ValidationError as e:
            raise CatalogClientError(f"Unexpected create response: {e}") from e

        self._log.info("destination_item_created", item_id=created.id, title=created.title)
        return created
