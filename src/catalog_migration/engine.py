"""
Migration Engine
================

Facade wiring the marketplaces, the persisted logs and the scheduler into
the operations an operator runs: plan, run, retry failed, schedule, pause,
resume, export.

Usage:
    async with create_engine() as engine:
        plan = await engine.plan()
        progress = await engine.run_batch(concurrency=3)
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, Optional, Union

import structlog

from catalog_migration.clients.destination_client import DestinationCatalogClient
from catalog_migration.clients.protocols import DestinationCatalog, SourceCatalog
from catalog_migration.clients.source_client import SourceCatalogClient
from catalog_migration.config import (
    CatalogSettings,
    MigrationSettings,
    Settings,
    catalog_settings as default_catalog_settings,
    migration_settings as default_migration_settings,
)
from catalog_migration.errors.exceptions import (
    BatchAlreadyRunningError,
    BatchScheduledError,
    NotEligibleError,
    NothingToResumeError,
)
from catalog_migration.models.batch import BatchProgress
from catalog_migration.models.catalog import DestinationItem, SourceItem
from catalog_migration.services import csv_export
from catalog_migration.services.item_migrator import ItemMigrator
from catalog_migration.services.ledger import AuditTrail, FailedItemQueue, ResultsLedger
from catalog_migration.services.matching import (
    MIN_SOURCE_ITEMS_FOR_BATCH,
    NearDuplicate,
    PriceMismatch,
    compute_missing,
    find_near_duplicates,
    find_price_mismatches,
    is_eligible,
)
from catalog_migration.services.pause import PauseController
from catalog_migration.services.retry_policy import RetryPolicy, Sleep, with_retries
from catalog_migration.services.scheduler import (
    AuditRetryListener,
    ProgressCallback,
    RefreshHook,
    Scheduler,
    record_safely,
)
from catalog_migration.services.scheduling_gate import Clock, SchedulingGate, parse_when, utcnow
from catalog_migration.services.store import PersistentStore, create_store

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MigrationPlan:
    """Comparison of both catalogs ahead of a batch."""

    missing: list[SourceItem]
    eligible: bool
    source_count: int
    destination_count: int
    price_mismatches: list[PriceMismatch]
    near_duplicates: list[NearDuplicate]


@dataclass(frozen=True)
class EngineStatus:
    """Point-in-time view of the engine for the operator."""

    session_id: str
    is_running: bool
    is_paused: bool
    progress: Optional[BatchProgress]
    scheduled_for: Optional[datetime]
    results_count: int
    succeeded_count: int
    error_count: int
    failed_queue_size: int
    audit_entries: int


class MigrationEngine:
    """Operator-facing migration workflow over one source and one destination."""

    def __init__(
        self,
        source: SourceCatalog,
        destination: DestinationCatalog,
        store: PersistentStore,
        settings: Optional[MigrationSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
        on_progress: Optional[ProgressCallback] = None,
        refresh_hooks: Iterable[RefreshHook] = (),
    ) -> None:
        self.settings = settings or default_migration_settings
        self.source = source
        self.destination = destination
        self.store = store

        self.results = ResultsLedger(store)
        self.audit = AuditTrail(store)
        self.failed_items = FailedItemQueue(store)
        self.pause_controller = PauseController()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.migrator = ItemMigrator(source, destination, self.settings)
        self._sleep = sleep
        self._last_plan: Optional[MigrationPlan] = None

        self.scheduler = Scheduler(
            self.migrator.migrate,
            self.results,
            self.audit,
            self.failed_items,
            pause=self.pause_controller,
            concurrency_limit=self.settings.concurrency_limit,
            retry_policy=self.retry_policy,
            poll_interval=self.settings.pause_poll_interval_seconds,
            sleep=sleep,
            on_progress=on_progress,
            refresh_hooks=[self._invalidate_plan, *refresh_hooks],
        )
        self.gate = SchedulingGate(self._run_scheduled, self.audit, clock=clock, sleep=sleep)

    @property
    def session_id(self) -> str:
        return self.audit.session_id

    @property
    def last_progress(self) -> Optional[BatchProgress]:
        """Final snapshot of the most recently completed batch."""
        return self.scheduler.last_progress

    @property
    def last_plan(self) -> Optional[MigrationPlan]:
        """Most recent plan, dropped whenever a batch completes."""
        return self._last_plan

    async def initialize(self) -> None:
        """Restore the persisted logs."""
        await self.results.load_all()
        await self.audit.load_all()
        await self.failed_items.load_all()
        logger.info(
            "engine_initialized",
            session_id=self.session_id,
            results=len(self.results),
            audit_entries=len(self.audit),
            failed_items=len(self.failed_items),
        )

    async def close(self) -> None:
        self.gate.cancel()
        await self.store.close()

    # =========================================================================
    # Planning
    # =========================================================================

    async def plan(self) -> MigrationPlan:
        """Fetch both catalogs and work out what is missing."""
        source_items, destination_items = await asyncio.gather(
            self.source.list_all_items(),
            self.destination.list_all_items(),
        )

        missing = compute_missing(source_items, destination_items)
        plan = MigrationPlan(
            missing=missing,
            eligible=is_eligible(source_items),
            source_count=len(source_items),
            destination_count=len(destination_items),
            price_mismatches=find_price_mismatches(
                source_items, destination_items, self.settings.price_multiplier
            ),
            near_duplicates=find_near_duplicates(
                missing, destination_items, self.settings.near_duplicate_threshold
            ),
        )
        self._last_plan = plan

        logger.info(
            "plan_computed",
            source_count=plan.source_count,
            destination_count=plan.destination_count,
            missing=len(plan.missing),
            eligible=plan.eligible,
            price_mismatches=len(plan.price_mismatches),
            near_duplicates=len(plan.near_duplicates),
        )
        return plan

    async def _invalidate_plan(self) -> None:
        self._last_plan = None

    async def _eligible_plan(self) -> MigrationPlan:
        plan = await self.plan()
        if not plan.eligible:
            raise NotEligibleError(
                f"Bulk migration needs at least {MIN_SOURCE_ITEMS_FOR_BATCH} source items, "
                f"found {plan.source_count}",
                details={"source_count": plan.source_count},
            )
        return plan

    def _ensure_idle(self) -> None:
        if self.scheduler.is_running:
            raise BatchAlreadyRunningError("A batch is already running")

    def _ensure_unscheduled(self) -> None:
        if self.gate.pending:
            raise BatchScheduledError(
                "A scheduled batch is pending; cancel it before starting one by hand",
                details={"scheduled_for": self.gate.scheduled_for.isoformat()},
            )

    def _apply_concurrency(self, concurrency: Optional[int]) -> None:
        if concurrency is not None:
            self.scheduler.concurrency_limit = concurrency

    async def _run_scheduled(self, _planned: list[SourceItem]) -> BatchProgress:
        # Catalogs may have changed since the schedule was set
        plan = await self._eligible_plan()
        return await self.scheduler.run_batch(plan.missing)

    # =========================================================================
    # Batches
    # =========================================================================

    async def run_batch(self, concurrency: Optional[int] = None) -> BatchProgress:
        """
        Migrate every missing item.

        Raises:
            BatchAlreadyRunningError: A batch is processing
            BatchScheduledError: A scheduled batch is pending
            NotEligibleError: The source catalog has fewer than 20 items
        """
        self._ensure_idle()
        self._ensure_unscheduled()
        self._apply_concurrency(concurrency)
        plan = await self._eligible_plan()
        return await self.scheduler.run_batch(plan.missing)

    async def retry_failed(self, concurrency: Optional[int] = None) -> BatchProgress:
        """
        Re-run only the items in the failed-item queue.

        Raises:
            BatchAlreadyRunningError: A batch is processing
            BatchScheduledError: A scheduled batch is pending
            NothingToResumeError: The failed-item queue is empty
        """
        self._ensure_idle()
        self._ensure_unscheduled()
        if not len(self.failed_items):
            raise NothingToResumeError("No failed items to retry")
        self._apply_concurrency(concurrency)
        return await self.scheduler.run_batch([], resume_from_failures=True)

    async def schedule_batch(
        self,
        when: Union[str, datetime],
        concurrency: Optional[int] = None,
    ) -> bool:
        """
        Run the missing items at `when` (immediately if `when` has passed).

        A deferred batch plans again when it fires, so items migrated in the
        meantime are not created twice. A new schedule replaces a pending one.

        Returns:
            True if deferred, False if it ran immediately (see `last_progress`)

        Raises:
            InvalidScheduleError: `when` is not an ISO-8601 timestamp
        """
        when_at = parse_when(when)
        self._ensure_idle()
        self._apply_concurrency(concurrency)
        plan = await self._eligible_plan()
        return await self.gate.schedule_batch(plan.missing, when_at)

    async def wait_for_schedule(self) -> Optional[BatchProgress]:
        return await self.gate.wait()

    def cancel_schedule(self) -> bool:
        return self.gate.cancel()

    def pause(self) -> None:
        self.pause_controller.pause()

    def resume(self) -> None:
        self.pause_controller.resume()

    def toggle_pause(self) -> bool:
        return self.pause_controller.toggle()

    # =========================================================================
    # Single item
    # =========================================================================

    async def migrate_one(self, item: SourceItem) -> DestinationItem:
        """
        Migrate one item with retries, outside of any batch.

        Raises:
            ItemMigrationError: All attempts failed (carries retry_count, duration_ms)
        """
        outcome = await with_retries(
            lambda: self.migrator.migrate(item),
            policy=self.retry_policy,
            listener=AuditRetryListener(self.audit, item, batch_id="single"),
            sleep=self._sleep,
        )
        await record_safely(
            self.results.record_outcome(item, outcome),
            "result_write_failed",
            item_id=item.id,
        )
        return outcome.unwrap()

    # =========================================================================
    # Reporting
    # =========================================================================

    def export_results(self) -> str:
        return csv_export.results_to_csv(self.results.items())

    def export_audit(self) -> str:
        return csv_export.audit_to_csv(self.audit.items())

    def status(self) -> EngineStatus:
        records = self.results.items()
        succeeded = sum(1 for record in records if record.status == "success")
        return EngineStatus(
            session_id=self.session_id,
            is_running=self.scheduler.is_running,
            is_paused=self.pause_controller.is_paused,
            progress=self.scheduler.progress(),
            scheduled_for=self.gate.scheduled_for,
            results_count=len(records),
            succeeded_count=succeeded,
            error_count=len(records) - succeeded,
            failed_queue_size=len(self.failed_items),
            audit_entries=len(self.audit),
        )


@asynccontextmanager
async def create_engine(
    app_settings: Optional[Settings] = None,
    settings: Optional[MigrationSettings] = None,
    catalogs: Optional[CatalogSettings] = None,
    on_progress: Optional[ProgressCallback] = None,
    store_factory: Callable[[Optional[Settings]], PersistentStore] = create_store,
) -> AsyncIterator[MigrationEngine]:
    """Engine over the configured httpx clients and store, initialized and closed."""
    catalogs = catalogs or default_catalog_settings
    store = store_factory(app_settings)

    async with SourceCatalogClient(catalogs) as source, DestinationCatalogClient(catalogs) as destination:
        engine = MigrationEngine(source, destination, store, settings, on_progress=on_progress)
        try:
            await engine.initialize()
            yield engine
        finally:
            await engine.close()
