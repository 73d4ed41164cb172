"""In-process fakes and factories shared by unit and integration tests."""
import asyncio
from collections import Counter
from decimal import Decimal
from typing import Any, Iterable, Optional

from catalog_migration.errors.exceptions import CatalogUnavailableError, DestinationValidationError
from catalog_migration.models.catalog import DestinationItem, SourceItem


def make_source_item(item_id: int, name: Optional[str] = "", price: int = 1000, **kwargs: Any) -> SourceItem:
    """Source item with a default name of `Product <id>`."""
    if name == "":
        name = f"Product {item_id}"
    return SourceItem(id=item_id, name=name, price=Decimal(price), **kwargs)


def make_source_items(count: int, start: int = 1) -> list[SourceItem]:
    return [make_source_item(i) for i in range(start, start + count)]


def make_destination_item(item_id: int, title: Optional[str], price: int = 10000) -> DestinationItem:
    return DestinationItem(id=item_id, title=title, price=Decimal(price))


class FakeSourceCatalog:
    """SourceCatalog over a fixed list; every item has one image unless overridden."""

    def __init__(self, items: Iterable[SourceItem], images: Optional[dict[int, list[str]]] = None):
        self.items = list(items)
        self.images = images or {}

    async def list_all_items(self) -> list[SourceItem]:
        return list(self.items)

    async def list_item_images(self, item_id: int) -> list[str]:
        return self.images.get(item_id, [f"https://cdn.example.com/{item_id}.jpg"])


class FakeDestinationCatalog:
    """
    DestinationCatalog that records calls and tracks concurrent creations.

    Args:
        items: Existing destination items
        no_category: Names for which category detection finds nothing
        transient_failures: name -> number of create calls that fail before succeeding
        rejected: name -> validation message returned on every create
        failing_uploads: Image URLs whose upload fails
        delay: Seconds each create call takes
    """

    def __init__(
        self,
        items: Iterable[DestinationItem] = (),
        no_category: Iterable[str] = (),
        transient_failures: Optional[dict[str, int]] = None,
        rejected: Optional[dict[str, str]] = None,
        failing_uploads: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.items = list(items)
        self.no_category = set(no_category)
        self.transient_failures = dict(transient_failures or {})
        self.rejected = dict(rejected or {})
        self.failing_uploads = set(failing_uploads)
        self.delay = delay
        self.created: list[dict[str, Any]] = []
        self.calls: Counter = Counter()
        self.active = 0
        self.max_active = 0

    async def list_all_items(self) -> list[DestinationItem]:
        return list(self.items)

    async def detect_category(self, name: str) -> Optional[int]:
        self.calls["detect_category"] += 1
        return None if name in self.no_category else 42

    async def upload_image(self, url: str) -> str:
        self.calls["upload_image"] += 1
        if url in self.failing_uploads:
            raise CatalogUnavailableError(f"upload failed for {url}")
        return f"img-{url.rsplit('/', 1)[-1]}"

    async def create_item(self, payload: dict[str, Any]) -> DestinationItem:
        self.calls["create_item"] += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            name = payload["name"]
            if name in self.rejected:
                raise DestinationValidationError(self.rejected[name])
            if self.transient_failures.get(name, 0) > 0:
                self.transient_failures[name] -= 1
                raise CatalogUnavailableError("destination-marketplace unavailable (HTTP 503)")
            created = DestinationItem(id=10_000 + len(self.created), title=name, price=payload["price"])
            self.created.append(payload)
            self.items.append(created)
            return created
        finally:
            self.active -= 1


async def no_sleep(_seconds: float) -> None:
    """Backoff sleep that only yields to the loop."""
    await asyncio.sleep(0)


class ManualSleep:
    """Sleep that blocks until released, recording the requested delay."""

    def __init__(self):
        self.delays = []
        self.released = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await self.released.wait()
