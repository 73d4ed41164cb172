"""Unit tests for the batch scheduler.

Tests cover:
    - Concurrency bound and single admission per item
    - Pause before and during a batch
    - Outcome recording, failed-item queue replacement, audit events
    - Resume runs over the failed-item queue
    - Guard against concurrent batches
"""
import asyncio

import pytest

from catalog_migration.errors.exceptions import BatchAlreadyRunningError, StoreError
from catalog_migration.models.catalog import DestinationItem
from catalog_migration.models.records import AuditAction, FailedItem
from catalog_migration.services.ledger import AuditTrail, FailedItemQueue, ResultsLedger
from catalog_migration.services.pause import PauseController
from catalog_migration.services.retry_policy import RetryPolicy, no_backoff
from catalog_migration.services.scheduler import Scheduler
from catalog_migration.services.store import InMemoryStore
from tests.helpers import make_source_item, make_source_items, no_sleep


class TrackingOperation:
    """Item operation that records admissions and concurrent calls."""

    def __init__(self, delay: float = 0.005, failing_ids=()):
        self.delay = delay
        self.failing_ids = set(failing_ids)
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.gate = None

    async def __call__(self, item):
        self.calls.append(item.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
            if item.id in self.failing_ids:
                raise RuntimeError(f"cannot migrate {item.id}")
            return DestinationItem(id=item.id + 1000, title=item.name)
        finally:
            self.active -= 1


class FailingStore(InMemoryStore):

    async def save(self, name, records):
        raise StoreError("redis down")


def make_scheduler(operation, results, audit, failed_items, **kwargs):
    kwargs.setdefault("retry_policy", RetryPolicy(max_retries=2, backoff=no_backoff()))
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("sleep", no_sleep)
    return Scheduler(operation, results, audit, failed_items, **kwargs)


async def wait_for(condition, timeout: float = 1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


class TestAdmission:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 3, 5])
    async def test_never_exceeds_concurrency_limit(self, results, audit, failed_items, limit):
        operation = TrackingOperation()
        scheduler = make_scheduler(operation, results, audit, failed_items, concurrency_limit=limit)

        progress = await scheduler.run_batch(make_source_items(12))

        assert operation.max_active == limit
        assert progress.completed == 12
        assert progress.succeeded == 12
        assert progress.active == 0

    @pytest.mark.asyncio
    async def test_each_item_admitted_once(self, results, audit, failed_items):
        operation = TrackingOperation()
        scheduler = make_scheduler(operation, results, audit, failed_items, concurrency_limit=4)

        await scheduler.run_batch(make_source_items(15))

        assert sorted(operation.calls) == list(range(1, 16))

    @pytest.mark.asyncio
    async def test_empty_batch_completes(self, results, audit, failed_items):
        scheduler = make_scheduler(TrackingOperation(), results, audit, failed_items)

        progress = await scheduler.run_batch([])

        assert progress.total == 0
        assert progress.is_processing is False
        assert audit.count(AuditAction.BATCH_COMPLETE) == 1

    def test_concurrency_limit_validated(self, results, audit, failed_items):
        with pytest.raises(ValueError):
            make_scheduler(TrackingOperation(), results, audit, failed_items, concurrency_limit=6)
        with pytest.raises(ValueError):
            make_scheduler(TrackingOperation(), results, audit, failed_items, concurrency_limit=0)


class TestPause:

    @pytest.mark.asyncio
    async def test_paused_batch_admits_nothing_until_resumed(self, results, audit, failed_items):
        operation = TrackingOperation()
        pause = PauseController(paused=True)
        scheduler = make_scheduler(operation, results, audit, failed_items, pause=pause)

        task = asyncio.create_task(scheduler.run_batch(make_source_items(5)))
        await asyncio.sleep(0.05)

        assert operation.calls == []
        assert scheduler.progress().is_paused is True

        pause.resume()
        progress = await task

        assert progress.completed == 5

    @pytest.mark.asyncio
    async def test_resume_wakes_paused_loop_without_waiting_for_poll(self, results, audit, failed_items):
        operation = TrackingOperation(delay=0)
        pause = PauseController(paused=True)
        scheduler = make_scheduler(operation, results, audit, failed_items, pause=pause, poll_interval=10)

        task = asyncio.create_task(scheduler.run_batch(make_source_items(4)))
        await asyncio.sleep(0.02)
        pause.resume()
        progress = await asyncio.wait_for(task, timeout=1)

        assert progress.completed == 4
        assert progress.started_at.tzinfo is not None
        assert 0 <= progress.elapsed_ms < 10_000

    @pytest.mark.asyncio
    async def test_pause_lets_in_flight_items_settle(self, results, audit, failed_items):
        operation = TrackingOperation(delay=0)
        operation.gate = asyncio.Event()
        pause = PauseController()
        scheduler = make_scheduler(operation, results, audit, failed_items, pause=pause, concurrency_limit=2)

        task = asyncio.create_task(scheduler.run_batch(make_source_items(6)))
        await wait_for(lambda: len(operation.calls) == 2)

        pause.pause()
        operation.gate.set()
        await wait_for(lambda: len(results) == 2)
        await asyncio.sleep(0.05)

        assert len(operation.calls) == 2
        assert scheduler.progress().completed == 2

        pause.resume()
        progress = await task

        assert progress.completed == 6
        assert sorted(operation.calls) == list(range(1, 7))


class TestSettlement:

    @pytest.mark.asyncio
    async def test_failures_recorded_and_queued(self, results, audit, failed_items):
        operation = TrackingOperation(failing_ids={2, 4})
        scheduler = make_scheduler(operation, results, audit, failed_items)

        progress = await scheduler.run_batch(make_source_items(5))

        assert progress.succeeded == 3
        assert progress.failed == 2
        assert {e.item_id for e in progress.errors} == {2, 4}
        assert {f.id for f in failed_items.items()} == {2, 4}
        assert all(f.error.startswith("cannot migrate") for f in failed_items.items())
        assert len(results) == 5
        assert operation.calls.count(2) == 3

    @pytest.mark.asyncio
    async def test_audit_events(self, results, audit, failed_items):
        operation = TrackingOperation(failing_ids={1})
        scheduler = make_scheduler(operation, results, audit, failed_items)

        await scheduler.run_batch(make_source_items(3))

        assert audit.count(AuditAction.BATCH_START) == 1
        assert audit.count(AuditAction.ITEM_START) == 3
        assert audit.count(AuditAction.ITEM_RETRY) == 2
        assert audit.count(AuditAction.ITEM_SUCCESS) == 2
        assert audit.count(AuditAction.ITEM_FAILED) == 1
        assert audit.count(AuditAction.BATCH_COMPLETE) == 1
        assert audit.latest().action == AuditAction.BATCH_COMPLETE

    @pytest.mark.asyncio
    async def test_progress_callback_receives_snapshots(self, results, audit, failed_items):
        snapshots = []
        scheduler = make_scheduler(
            TrackingOperation(), results, audit, failed_items, on_progress=snapshots.append
        )

        await scheduler.run_batch(make_source_items(4))

        completed = [s.completed for s in snapshots]
        assert completed == sorted(completed)
        assert snapshots[0].is_processing is True
        assert snapshots[-1].is_processing is False
        assert snapshots[-1].progress_percentage == 100.0

    @pytest.mark.asyncio
    async def test_refresh_hooks_called_on_completion(self, results, audit, failed_items):
        calls = []

        async def refresh():
            calls.append("refreshed")

        scheduler = make_scheduler(TrackingOperation(), results, audit, failed_items, refresh_hooks=[refresh])

        await scheduler.run_batch(make_source_items(2))

        assert calls == ["refreshed"]

    @pytest.mark.asyncio
    async def test_store_errors_do_not_abort_batch(self):
        store = FailingStore()
        scheduler = make_scheduler(
            TrackingOperation(failing_ids={1}),
            ResultsLedger(store),
            AuditTrail(store),
            FailedItemQueue(store),
        )

        progress = await scheduler.run_batch(make_source_items(3))

        assert progress.completed == 3
        assert progress.succeeded == 2


class TestBatchLifecycle:

    @pytest.mark.asyncio
    async def test_second_batch_rejected_while_running(self, results, audit, failed_items):
        operation = TrackingOperation(delay=0)
        operation.gate = asyncio.Event()
        scheduler = make_scheduler(operation, results, audit, failed_items)

        task = asyncio.create_task(scheduler.run_batch(make_source_items(3)))
        await wait_for(lambda: scheduler.is_running and operation.calls)

        with pytest.raises(BatchAlreadyRunningError):
            await scheduler.run_batch(make_source_items(3))

        operation.gate.set()
        await task
        assert scheduler.is_running is False
        assert scheduler.progress() is None

    @pytest.mark.asyncio
    async def test_resume_runs_failed_queue_only(self, results, audit, failed_items):
        await failed_items.replace([FailedItem.from_item(make_source_item(i), "boom") for i in (7, 8)])
        operation = TrackingOperation()
        scheduler = make_scheduler(operation, results, audit, failed_items)

        progress = await scheduler.run_batch(make_source_items(10), resume_from_failures=True)

        assert sorted(operation.calls) == [7, 8]
        assert progress.resume is True
        assert progress.total == 2
        assert len(failed_items) == 0

    @pytest.mark.asyncio
    async def test_resume_keeps_only_new_failures(self, results, audit, failed_items):
        await failed_items.replace([FailedItem.from_item(make_source_item(i), "boom") for i in (7, 8)])
        scheduler = make_scheduler(TrackingOperation(failing_ids={8}), results, audit, failed_items)

        await scheduler.run_batch([], resume_from_failures=True)

        assert [f.id for f in failed_items.items()] == [8]
