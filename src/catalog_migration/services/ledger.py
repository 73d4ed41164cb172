"""Capacity-bounded, persisted record logs.

The results ledger, the audit trail and the failed-item queue share one
structure: a newest-first list truncated to a fixed capacity and written
through to the persistent store on every mutation.
"""
import asyncio
from typing import Generic, Iterable, Optional, TypeVar
from uuid import uuid4

import structlog
from pydantic import BaseModel, ValidationError

from catalog_migration.models.catalog import SourceItem
from catalog_migration.models.outcome import MigrationOutcome
from catalog_migration.models.records import (
    AuditAction,
    AuditLogEntry,
    FailedItem,
    ResultRecord,
)
from catalog_migration.services.store import (
    AUDIT_LOGS_KEY,
    FAILED_ITEMS_KEY,
    RESULTS_KEY,
    PersistentStore,
)

logger = structlog.get_logger(__name__)

RESULTS_CAPACITY = 200
AUDIT_LOG_CAPACITY = 100
FAILED_ITEMS_CAPACITY = 50

RecordT = TypeVar("RecordT", bound=BaseModel)


class BoundedLog(Generic[RecordT]):
    """Newest-first list of records capped at `capacity`, persisted under `name`.

    The in-memory list is swapped in one synchronous step and the persisted
    copy is written under a per-log lock, so concurrent appends from settling
    tasks reach the store in mutation order.
    """

    def __init__(
        self,
        store: PersistentStore,
        name: str,
        model: type[RecordT],
        capacity: int,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._store = store
        self._name = name
        self._model = model
        self._capacity = capacity
        self._records: list[RecordT] = []
        self._lock = asyncio.Lock()
        self._log = logger.bind(collection=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._records)

    def items(self) -> list[RecordT]:
        """Records newest first (a copy)."""
        return list(self._records)

    def latest(self) -> Optional[RecordT]:
        return self._records[0] if self._records else None

    async def load_all(self) -> list[RecordT]:
        """Restore records from the store, dropping entries that no longer validate."""
        raw_records = await self._store.load(self._name)
        restored: list[RecordT] = []
        for raw in raw_records:
            try:
                restored.append(self._model.model_validate(raw))
            except ValidationError as e:
                self._log.warning("record_skipped_invalid", error=str(e))

        async with self._lock:
            self._records = restored[: self._capacity]

        self._log.info("records_loaded", count=len(self._records))
        return self.items()

    async def append(self, records: Iterable[RecordT]) -> list[RecordT]:
        """Put `records` in front, truncate to capacity and persist."""
        new_records = list(records)
        if not new_records:
            return self.items()

        async with self._lock:
            self._records = (new_records + self._records)[: self._capacity]
            await self._persist()
        return self.items()

    async def _replace(self, records: Iterable[RecordT]) -> None:
        async with self._lock:
            self._records = list(records)[: self._capacity]
            await self._persist()

    async def _persist(self) -> None:
        await self._store.save(
            self._name,
            [record.model_dump(mode="json") for record in self._records],
        )


class ResultsLedger(BoundedLog[ResultRecord]):
    """Every completed attempt, success or failure, for history and CSV export."""

    def __init__(self, store: PersistentStore, capacity: int = RESULTS_CAPACITY) -> None:
        super().__init__(store, RESULTS_KEY, ResultRecord, capacity)

    async def record_outcome(self, item: SourceItem, outcome: MigrationOutcome) -> ResultRecord:
        """Project an outcome into a ResultRecord and append it."""
        record = ResultRecord(
            id=item.id,
            name=item.name or "",
            status="success" if outcome.succeeded else "error",
            error=None if outcome.succeeded else outcome.reason,
            retry_count=outcome.retry_count,
            duration_ms=outcome.duration_ms,
        )
        await self.append([record])
        return record


class AuditTrail(BoundedLog[AuditLogEntry]):
    """Fine-grained lifecycle log, one entry per batch or item transition."""

    def __init__(
        self,
        store: PersistentStore,
        session_id: Optional[str] = None,
        capacity: int = AUDIT_LOG_CAPACITY,
    ) -> None:
        super().__init__(store, AUDIT_LOGS_KEY, AuditLogEntry, capacity)
        self.session_id = session_id or uuid4().hex

    async def record(self, action: AuditAction, details: str = "") -> AuditLogEntry:
        entry = AuditLogEntry(action=action, details=details, session_id=self.session_id)
        await self.append([entry])
        self._log.debug("audit_recorded", action=action.value, details=details)
        return entry

    def count(self, action: AuditAction) -> int:
        return sum(1 for entry in self._records if entry.action == action)


class FailedItemQueue(BoundedLog[FailedItem]):
    """Items whose last attempt failed, kept for a scoped retry run."""

    def __init__(self, store: PersistentStore, capacity: int = FAILED_ITEMS_CAPACITY) -> None:
        super().__init__(store, FAILED_ITEMS_KEY, FailedItem, capacity)

    async def replace(self, items: Iterable[FailedItem]) -> None:
        """Swap the queue for a new failure set (newest first)."""
        await self._replace(items)
        self._log.info("failed_items_replaced", count=len(self))

    async def clear(self) -> None:
        await self._replace([])
        self._log.info("failed_items_cleared")

    def source_items(self) -> list[SourceItem]:
        return [failed.to_source_item() for failed in self._records]
