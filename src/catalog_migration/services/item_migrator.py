"""
Item Migrator

Creates one destination item from one source item:
category detection -> image upload -> payload -> creation.

A single call is one attempt; retries are the caller's concern
(see `retry_policy.with_retries`).
"""

import html
import re
from decimal import Decimal
from typing import Any, Optional

import structlog

from catalog_migration.clients.protocols import DestinationCatalog, SourceCatalog
from catalog_migration.config import MigrationSettings, migration_settings as default_migration_settings
from catalog_migration.errors.exceptions import (
    CatalogClientError,
    CategoryNotDetectedError,
    NoImagesError,
)
from catalog_migration.models.catalog import DestinationItem, SourceItem

logger = structlog.get_logger(__name__)

_BLOCK_TAG_RE = re.compile(r"<\s*(br|/p|/div|/li|/h[1-6])\s*/?\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_INLINE_SPACE_RE = re.compile(r"[ \t\u00a0]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def clean_description(text: str) -> str:
    """Turn an HTML description into plain text, keeping paragraph breaks."""
    if not text:
        return ""
    text = _BLOCK_TAG_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    text = _INLINE_SPACE_RE.sub(" ", text)
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def convert_price(price: Decimal, multiplier: int) -> int:
    """Source price units -> destination price units (toman -> rial by default)."""
    return int(price * multiplier)


class ItemMigrator:
    """
    Migrates a single source item onto the destination marketplace.

    Usage:
        migrator = ItemMigrator(source, destination)
        created = await migrator.migrate(item)
    """

    def __init__(
        self,
        source: SourceCatalog,
        destination: DestinationCatalog,
        settings: Optional[MigrationSettings] = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.settings = settings or default_migration_settings

    async def migrate(self, item: SourceItem) -> DestinationItem:
        """
        Create `item` on the destination.

        Raises:
            CategoryNotDetectedError: No destination category matches the name
            NoImagesError: None of the item's images could be uploaded
            DestinationValidationError: The destination rejected the payload
            CatalogUnavailableError: A marketplace could not be reached
        """
        log = logger.bind(item_id=item.id)
        name = (item.name or "").strip()

        category_id = await self.destination.detect_category(name)
        if category_id is None:
            raise CategoryNotDetectedError(
                f"No category detected for '{name}'",
                details={"item_id": item.id},
            )

        photo_ids = await self._upload_images(item)
        if not photo_ids:
            raise NoImagesError(
                f"No images could be uploaded for '{name}'",
                details={"item_id": item.id},
            )

        payload = self.build_payload(item, category_id, photo_ids)
        created = await self.destination.create_item(payload)

        log.info(
            "item_migrated",
            destination_id=created.id,
            category_id=category_id,
            photos=len(photo_ids),
        )
        return created

    async def _upload_images(self, item: SourceItem) -> list[str]:
        urls = await self.source.list_item_images(item.id)
        photo_ids: list[str] = []

        for url in urls:
            try:
                photo_ids.append(await self.destination.upload_image(url))
            except CatalogClientError as e:
                logger.warning("image_upload_skipped", item_id=item.id, url=url, error=e.message)

        return photo_ids

    def build_payload(
        self,
        item: SourceItem,
        category_id: int,
        photo_ids: list[str],
    ) -> dict[str, Any]:
        """Destination create-item payload for `item`."""
        payload: dict[str, Any] = {
            "name": (item.name or "").strip(),
            "price": convert_price(item.price, self.settings.price_multiplier),
            "description": clean_description(item.description),
            "category_id": category_id,
            "photo": photo_ids[0],
            "photos": photo_ids,
            "stock": self.settings.default_stock,
            "preparation_days": self.settings.default_preparation_days,
        }

        if item.weight is not None:
            payload["weight"] = int(item.weight)
            payload["package_weight"] = int(item.weight)

        if item.dimensions is not None:
            for field_name in ("length", "width", "height"):
                value = getattr(item.dimensions, field_name)
                if value is not None:
                    payload[field_name] = value

        return payload
