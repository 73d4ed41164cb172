"""Deferred batch start: run a batch now or at a given time, one pending at a time."""
import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from catalog_migration.errors.exceptions import InvalidScheduleError, MigrationEngineError
from catalog_migration.models.catalog import SourceItem
from catalog_migration.models.records import AuditAction
from catalog_migration.services.ledger import AuditTrail
from catalog_migration.services.retry_policy import Sleep

logger = structlog.get_logger(__name__)

BatchRunner = Callable[[list[SourceItem]], Awaitable[Any]]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_when(when: Union[str, datetime]) -> datetime:
    """ISO-8601 string or datetime -> aware datetime. Naive values are local time.

    Raises:
        InvalidScheduleError: `when` is not an ISO-8601 timestamp
    """
    if isinstance(when, str):
        try:
            when = datetime.fromisoformat(when.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidScheduleError(
                f"Invalid schedule time '{when}': expected ISO-8601, e.g. 2026-01-01T03:00:00+00:00"
            ) from e
    if when.tzinfo is None:
        when = when.astimezone()
    return when


class SchedulingGate:
    """
    Holds at most one deferred batch.

    Usage:
        gate = SchedulingGate(scheduler.run_batch, audit)
        deferred = await gate.schedule_batch(items, "2026-01-01T03:00:00+00:00")
    """

    def __init__(
        self,
        run_batch: BatchRunner,
        audit: AuditTrail,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._run_batch = run_batch
        self._audit = audit
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._scheduled_for: Optional[datetime] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def scheduled_for(self) -> Optional[datetime]:
        return self._scheduled_for if self.pending else None

    async def schedule_batch(self, items: list[SourceItem], when: Union[str, datetime]) -> bool:
        """
        Run `items` at `when`.

        Returns:
            True if the batch was deferred, False if it ran immediately
        """
        when_at = parse_when(when)
        delay = (when_at - self._clock()).total_seconds()

        if delay <= 0:
            logger.info("schedule_time_passed_running_now", when=when_at.isoformat())
            await self._run_batch(items)
            return False

        if self.cancel():
            logger.info("schedule_replaced")

        await self._audit.record(
            AuditAction.SCHEDULE_SET,
            f"{len(items)} items at {when_at.isoformat()}",
        )
        self._scheduled_for = when_at
        self._task = asyncio.create_task(self._deferred(items, delay))
        logger.info("schedule_set", when=when_at.isoformat(), delay_seconds=round(delay, 3), items=len(items))
        return True

    async def _deferred(self, items: list[SourceItem], delay: float) -> Any:
        await self._sleep(delay)
        logger.info("scheduled_batch_starting", items=len(items))
        try:
            return await self._run_batch(items)
        except MigrationEngineError as e:
            logger.error("scheduled_batch_failed", error=e.message)
            return None

    def cancel(self) -> bool:
        """Drop the pending schedule. Returns True if one was pending."""
        if not self.pending:
            return False
        self._task.cancel()
        self._task = None
        self._scheduled_for = None
        logger.info("schedule_cancelled")
        return True

    async def wait(self) -> Any:
        """Wait for the pending batch to finish; returns its result."""
        if self._task is None:
            return None
        try:
            return await self._task
        except asyncio.CancelledError:
            return None
