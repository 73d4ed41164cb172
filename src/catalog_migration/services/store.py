"""
Persistent Store
================

Key-value persistence for the engine's named collections (results, audit
logs, failed items). The engine depends only on the `PersistentStore`
protocol; Redis backs it in production and an in-memory dict in tests.

Each collection is stored as one JSON array under its own key, so a save is
a single SET and a load is a single GET.
"""

import copy
import json
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from catalog_migration.config import Settings, StoreBackend, settings as default_settings
from catalog_migration.errors.exceptions import StoreError

logger = structlog.get_logger(__name__)

# Collection names
RESULTS_KEY = "results"
AUDIT_LOGS_KEY = "auditLogs"
FAILED_ITEMS_KEY = "failedItems"


class PersistentStore(Protocol):
    """Durable key-value store holding lists of JSON-compatible records."""

    async def load(self, name: str) -> list[dict[str, Any]]:
        """Return the stored list for `name`, or an empty list."""
        ...

    async def save(self, name: str, records: list[dict[str, Any]]) -> None:
        """Replace the stored list for `name`."""
        ...

    async def close(self) -> None:
        """Release connections held by the store."""
        ...


class InMemoryStore:
    """Process-local store. Records are deep-copied in and out."""

    def __init__(self, initial: Optional[dict[str, list[dict[str, Any]]]] = None) -> None:
        self._data: dict[str, list[dict[str, Any]]] = copy.deepcopy(initial or {})

    async def load(self, name: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._data.get(name, []))

    async def save(self, name: str, records: list[dict[str, Any]]) -> None:
        self._data[name] = copy.deepcopy(records)

    async def close(self) -> None:
        pass

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        """Current contents, for assertions and debugging."""
        return copy.deepcopy(self._data)


class RedisStore:
    """
    Redis-backed store.

    Usage:
        redis = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        store = RedisStore(redis)
        await store.save("results", [...])
    """

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "catalog-migration:") -> None:
        """
        Initialize RedisStore.

        Args:
            redis_client: Async Redis client instance
            key_prefix: Prefix prepended to every collection name
        """
        self._redis = redis_client
        self._key_prefix = key_prefix

    def _key(self, name: str) -> str:
        """Generate Redis key for a collection."""
        return f"{self._key_prefix}{name}"

    async def load(self, name: str) -> list[dict[str, Any]]:
        key = self._key(name)
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            logger.error("store_load_failed", key=key, error=str(e))
            raise StoreError(f"Failed to load '{name}' from Redis: {e}") from e

        if not raw:
            return []

        if isinstance(raw, bytes):
            raw = raw.decode()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("store_payload_corrupt", key=key, error=str(e))
            return []

        if not isinstance(data, list):
            logger.warning("store_payload_not_a_list", key=key, payload_type=type(data).__name__)
            return []

        return data

    async def save(self, name: str, records: list[dict[str, Any]]) -> None:
        key = self._key(name)
        try:
            await self._redis.set(key, json.dumps(records, ensure_ascii=False))
        except RedisError as e:
            logger.error("store_save_failed", key=key, error=str(e))
            raise StoreError(f"Failed to save '{name}' to Redis: {e}") from e

        logger.debug("store_saved", key=key, count=len(records))

    async def close(self) -> None:
        await self._redis.aclose()


def create_store(app_settings: Optional[Settings] = None) -> PersistentStore:
    """Build the store selected by `STORE_BACKEND`."""
    app_settings = app_settings or default_settings

    if app_settings.store_backend == StoreBackend.MEMORY:
        logger.info("store_backend_selected", backend="memory")
        return InMemoryStore()

    client = aioredis.Redis.from_url(app_settings.redis_url, decode_responses=True)
    logger.info("store_backend_selected", backend="redis", prefix=app_settings.store_key_prefix)
    return RedisStore(client, key_prefix=app_settings.store_key_prefix)
