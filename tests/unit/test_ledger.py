"""Unit tests for the bounded, persisted logs."""
import pytest

from catalog_migration.models.catalog import DestinationItem
from catalog_migration.models.outcome import MigrationFailure, MigrationSuccess
from catalog_migration.models.records import AuditAction, FailedItem, ResultRecord
from catalog_migration.services.ledger import (
    AUDIT_LOG_CAPACITY,
    FAILED_ITEMS_CAPACITY,
    RESULTS_CAPACITY,
    AuditTrail,
    FailedItemQueue,
    ResultsLedger,
)
from catalog_migration.services.store import InMemoryStore
from tests.helpers import make_source_item


def _record(item_id: int) -> ResultRecord:
    return ResultRecord(id=item_id, name=f"Product {item_id}", status="success")


class TestResultsLedger:

    def test_capacities(self):
        assert (RESULTS_CAPACITY, AUDIT_LOG_CAPACITY, FAILED_ITEMS_CAPACITY) == (200, 100, 50)

    @pytest.mark.asyncio
    async def test_newest_first(self, results):
        await results.append([_record(1)])
        await results.append([_record(2)])

        assert [r.id for r in results.items()] == [2, 1]
        assert results.latest().id == 2

    @pytest.mark.asyncio
    async def test_truncates_to_capacity(self, results):
        for i in range(RESULTS_CAPACITY + 5):
            await results.append([_record(i)])

        items = results.items()
        assert len(items) == RESULTS_CAPACITY
        assert items[0].id == RESULTS_CAPACITY + 4
        assert items[-1].id == 5

    @pytest.mark.asyncio
    async def test_persists_every_mutation(self, store, results):
        await results.append([_record(7)])

        persisted = store.snapshot()["results"]
        assert persisted[0]["id"] == 7
        assert persisted[0]["status"] == "success"

    @pytest.mark.asyncio
    async def test_load_all_restores_and_skips_invalid(self):
        store = InMemoryStore({
            "results": [
                {"id": 1, "name": "Lamp", "status": "success", "retry_count": 0, "duration_ms": 10},
                {"id": "not-an-id", "status": "unknown"},
            ]
        })
        ledger = ResultsLedger(store)

        restored = await ledger.load_all()

        assert [r.id for r in restored] == [1]

    @pytest.mark.asyncio
    async def test_record_outcome_success(self, results):
        item = make_source_item(3, "Lamp")
        outcome = MigrationSuccess(created_item=DestinationItem(id=9), attempt_count=2, duration_ms=120)

        record = await results.record_outcome(item, outcome)

        assert record.status == "success"
        assert record.error is None
        assert record.retry_count == 1
        assert record.duration_ms == 120

    @pytest.mark.asyncio
    async def test_record_outcome_failure(self, results):
        item = make_source_item(4, None)
        outcome = MigrationFailure(reason="No images", error=RuntimeError(), attempt_count=3, duration_ms=5)

        record = await results.record_outcome(item, outcome)

        assert record.status == "error"
        assert record.error == "No images"
        assert record.retry_count == 2
        assert record.name == ""


class TestAuditTrail:

    @pytest.mark.asyncio
    async def test_record_stamps_session(self, audit):
        entry = await audit.record(AuditAction.BATCH_START, "25 items")

        assert entry.session_id == "test-session"
        assert entry.timestamp.tzinfo is not None
        assert audit.count(AuditAction.BATCH_START) == 1

    @pytest.mark.asyncio
    async def test_capped_at_capacity(self, audit):
        for i in range(AUDIT_LOG_CAPACITY + 1):
            await audit.record(AuditAction.ITEM_START, str(i))

        assert len(audit) == AUDIT_LOG_CAPACITY
        assert audit.latest().details == str(AUDIT_LOG_CAPACITY)

    def test_generated_session_id(self, store):
        assert AuditTrail(store).session_id != AuditTrail(store).session_id


class TestFailedItemQueue:

    @pytest.mark.asyncio
    async def test_replace_and_source_items(self, failed_items):
        failures = [FailedItem.from_item(make_source_item(i), "boom") for i in (1, 2)]

        await failed_items.replace(failures)

        sources = failed_items.source_items()
        assert [s.id for s in sources] == [1, 2]
        assert not hasattr(sources[0], "error")

    @pytest.mark.asyncio
    async def test_replace_truncates(self, failed_items):
        failures = [FailedItem.from_item(make_source_item(i), "boom") for i in range(60)]

        await failed_items.replace(failures)

        assert len(failed_items) == FAILED_ITEMS_CAPACITY

    @pytest.mark.asyncio
    async def test_clear_persists_empty_list(self, store, failed_items):
        await failed_items.replace([FailedItem.from_item(make_source_item(1), "boom")])
        await failed_items.clear()

        assert len(failed_items) == 0
        assert store.snapshot()["failedItems"] == []
