"""Collaborator contracts the engine depends on.

The engine only sees these protocols; the httpx clients in this package are
one implementation, test fakes are another.
"""
from typing import Any, Optional, Protocol

from catalog_migration.models.catalog import DestinationItem, SourceItem


class SourceCatalog(Protocol):
    """Read access to the source marketplace."""

    async def list_all_items(self) -> list[SourceItem]:
        """Complete snapshot of the source catalog (pagination handled inside)."""
        ...

    async def list_item_images(self, item_id: int) -> list[str]:
        """Image URLs of one item, default image first."""
        ...


class DestinationCatalog(Protocol):
    """Read/write access to the destination marketplace."""

    async def list_all_items(self) -> list[DestinationItem]:
        """Complete snapshot of the destination catalog."""
        ...

    async def detect_category(self, name: str) -> Optional[int]:
        """Category id suggested for an item name, or None when nothing fits."""
        ...

    async def upload_image(self, url: str) -> str:
        """Upload an image by URL and return the destination's image id."""
        ...

    async def create_item(self, payload: dict[str, Any]) -> DestinationItem:
        """Create an item and return it as stored by the destination."""
        ...
