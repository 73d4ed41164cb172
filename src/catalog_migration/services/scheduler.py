"""
Batch Scheduler
===============

Drives one batch of item migrations on the running event loop.

The admission loop is the only place that starts work. It dequeues an item,
counts it active and starts its retried migration as a task, for as long as
fewer than `concurrency_limit` items are active, the queue is non-empty and
the pause controller is not paused. Each settlement records the outcome,
frees the slot and wakes the loop.

While paused no new item is admitted; in-flight items settle and are
recorded normally. A paused loop wakes as soon as the controller resumes,
and re-reads it at least every `poll_interval` seconds.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from catalog_migration.errors.exceptions import BatchAlreadyRunningError, StoreError
from catalog_migration.models.batch import BatchProgress, BatchState, ItemError
from catalog_migration.models.catalog import DestinationItem, SourceItem
from catalog_migration.models.outcome import MigrationFailure, MigrationSuccess
from catalog_migration.models.records import AuditAction, FailedItem
from catalog_migration.services.ledger import AuditTrail, FailedItemQueue, ResultsLedger
from catalog_migration.services.pause import PauseController
from catalog_migration.services.retry_policy import (
    RetryPolicy,
    Sleep,
    describe_error,
    with_retries,
)

logger = structlog.get_logger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 5
DEFAULT_POLL_INTERVAL = 0.3

ItemOperation = Callable[[SourceItem], Awaitable[DestinationItem]]
ProgressCallback = Callable[[BatchProgress], None]
RefreshHook = Callable[[], Awaitable[None]]


async def record_safely(write: Awaitable[Any], event: str, **context: Any) -> None:
    """Await a ledger write, logging store failures instead of raising."""
    try:
        await write
    except StoreError as e:
        logger.error(event, error=e.message, **context)


def _label(item: SourceItem) -> str:
    return f"#{item.id} {item.name or ''}".strip()


class AuditRetryListener:
    """Writes ITEM_START, ITEM_RETRY and the terminal event for one item."""

    def __init__(self, audit: AuditTrail, item: SourceItem, batch_id: str) -> None:
        self.audit = audit
        self.item = item
        self.batch_id = batch_id

    async def _record(self, action: AuditAction, details: str) -> None:
        await record_safely(
            self.audit.record(action, details),
            "audit_write_failed",
            batch_id=self.batch_id,
            item_id=self.item.id,
            action=action.value,
        )

    async def on_start(self) -> None:
        await self._record(AuditAction.ITEM_START, _label(self.item))

    async def on_retry(self, retry_number: int, error: BaseException) -> None:
        await self._record(
            AuditAction.ITEM_RETRY,
            f"{_label(self.item)}: attempt {retry_number} failed: {describe_error(error)}",
        )

    async def on_success(self, outcome: MigrationSuccess) -> None:
        await self._record(
            AuditAction.ITEM_SUCCESS,
            f"{_label(self.item)} -> {outcome.created_item.id} ({outcome.attempt_count} attempts)",
        )

    async def on_failure(self, outcome: MigrationFailure) -> None:
        await self._record(AuditAction.ITEM_FAILED, f"{_label(self.item)}: {outcome.reason}")


class Scheduler:
    """
    Concurrency-bounded batch runner.

    Usage:
        scheduler = Scheduler(migrator.migrate, results, audit, failed_items, pause)
        progress = await scheduler.run_batch(missing_items)
        progress = await scheduler.run_batch([], resume_from_failures=True)
    """

    def __init__(
        self,
        operation: ItemOperation,
        results: ResultsLedger,
        audit: AuditTrail,
        failed_items: FailedItemQueue,
        pause: Optional[PauseController] = None,
        concurrency_limit: int = 3,
        retry_policy: Optional[RetryPolicy] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Sleep = asyncio.sleep,
        on_progress: Optional[ProgressCallback] = None,
        refresh_hooks: Iterable[RefreshHook] = (),
    ) -> None:
        self.operation = operation
        self.results = results
        self.audit = audit
        self.failed_items = failed_items
        self.pause = pause or PauseController()
        self.retry_policy = retry_policy or RetryPolicy()
        self.poll_interval = poll_interval
        self.on_progress = on_progress
        self.refresh_hooks = list(refresh_hooks)
        self._sleep = sleep
        self._state: Optional[BatchState] = None
        self.last_progress: Optional[BatchProgress] = None
        self.concurrency_limit = concurrency_limit

    @property
    def concurrency_limit(self) -> int:
        return self._concurrency_limit

    @concurrency_limit.setter
    def concurrency_limit(self, value: int) -> None:
        if not MIN_CONCURRENCY <= value <= MAX_CONCURRENCY:
            raise ValueError(
                f"concurrency_limit must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}, got {value}"
            )
        self._concurrency_limit = value

    @property
    def is_running(self) -> bool:
        return self._state is not None

    def progress(self) -> Optional[BatchProgress]:
        """Snapshot of the running batch, or None when idle."""
        if self._state is None:
            return None
        self._state.is_paused = self.pause.is_paused
        return self._state.snapshot()

    async def run_batch(
        self,
        items: Iterable[SourceItem],
        resume_from_failures: bool = False,
    ) -> BatchProgress:
        """
        Migrate `items` (or the failed-item queue when resuming) and return the
        final progress snapshot.

        Item failures are recorded, never raised.

        Raises:
            BatchAlreadyRunningError: Another batch is processing on this scheduler
        """
        if self._state is not None:
            raise BatchAlreadyRunningError(
                "A batch is already running",
                details={"batch_id": self._state.batch_id},
            )

        queue = self.failed_items.source_items() if resume_from_failures else list(items)
        state = BatchState(queue=deque(queue), resume=resume_from_failures)
        self._state = state

        log = logger.bind(batch_id=state.batch_id)
        log.info(
            "batch_started",
            total=state.total,
            resume=resume_from_failures,
            concurrency_limit=self.concurrency_limit,
        )

        tasks: set[asyncio.Task] = set()
        failures: list[FailedItem] = []
        settled = asyncio.Event()

        try:
            await record_safely(
                self.audit.record(
                    AuditAction.BATCH_START,
                    f"{state.total} items, concurrency {self.concurrency_limit}"
                    + (", resume" if resume_from_failures else ""),
                ),
                "audit_write_failed",
                batch_id=state.batch_id,
            )
            self._notify(state)

            while not state.is_drained:
                state.is_paused = self.pause.is_paused

                while (
                    not self.pause.is_paused
                    and state.queue
                    and state.active_count < self.concurrency_limit
                ):
                    item = state.queue.popleft()
                    state.active_count += 1
                    task = asyncio.create_task(self._run_item(state, item, failures, settled))
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)

                if state.is_drained:
                    break

                if self.pause.is_paused and state.queue:
                    await self.pause.wait_until_resumed(timeout=self.poll_interval)
                    continue

                settled.clear()
                try:
                    await asyncio.wait_for(settled.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

            state.is_processing = False
            state.is_paused = self.pause.is_paused
            await self._complete(state, failures)
            log.info(
                "batch_completed",
                total=state.total,
                succeeded=state.success_count,
                failed=len(state.error_list),
            )
            self.last_progress = state.snapshot()
            return self.last_progress
        finally:
            for task in tasks:
                task.cancel()
            self._state = None

    async def _run_item(
        self,
        state: BatchState,
        item: SourceItem,
        failures: list[FailedItem],
        settled: asyncio.Event,
    ) -> None:
        log = logger.bind(batch_id=state.batch_id, item_id=item.id)
        listener = AuditRetryListener(self.audit, item, state.batch_id)

        try:
            outcome = await with_retries(
                lambda: self.operation(item),
                policy=self.retry_policy,
                listener=listener,
                sleep=self._sleep,
            )
            await record_safely(
                self.results.record_outcome(item, outcome),
                "result_write_failed",
                batch_id=state.batch_id,
                item_id=item.id,
            )

            if outcome.succeeded:
                state.success_count += 1
                log.debug("item_succeeded", attempts=outcome.attempt_count)
            else:
                state.error_list.append(ItemError(item.id, item.name or "", outcome.reason))
                failures.append(FailedItem.from_item(item, outcome.reason))
                log.warning("item_failed", attempts=outcome.attempt_count, error=outcome.reason)
        finally:
            state.active_count -= 1
            state.completed_count += 1
            settled.set()

        self._notify(state)

    async def _complete(self, state: BatchState, failures: list[FailedItem]) -> None:
        # Newest failure first, like every other log
        await record_safely(
            self.failed_items.replace(reversed(failures)),
            "failed_items_write_failed",
            batch_id=state.batch_id,
        )
        await record_safely(
            self.audit.record(
                AuditAction.BATCH_COMPLETE,
                f"{state.success_count} succeeded, {len(state.error_list)} failed of {state.total}",
            ),
            "audit_write_failed",
            batch_id=state.batch_id,
        )

        for hook in self.refresh_hooks:
            try:
                await hook()
            except Exception:
                logger.exception("refresh_hook_failed", batch_id=state.batch_id)

        self._notify(state)

    def _notify(self, state: BatchState) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(state.snapshot())
        except Exception:
            logger.exception("progress_callback_failed", batch_id=state.batch_id)
