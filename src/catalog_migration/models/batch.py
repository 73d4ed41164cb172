"""Transient scheduler state for a single batch run."""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from catalog_migration.models.catalog import SourceItem


@dataclass(frozen=True)
class ItemError:
    """Failed item shown in the expandable per-item error list."""

    item_id: int
    name: str
    error: str


@dataclass(frozen=True)
class BatchProgress:
    """Immutable snapshot of a batch's live counters.

    Attributes:
        batch_id: Identifier of the batch run
        total: Items queued when the batch started
        active: Items currently in flight
        completed: Items settled (success or failure)
        succeeded: Items migrated successfully
        errors: Failed items so far
        is_paused: Whether admissions are currently withheld
        is_processing: False once the batch has completed
        resume: Whether this batch runs over the failed-item queue
        started_at: When the batch started (UTC)
        elapsed_ms: Wall time from start to this snapshot
    """

    batch_id: str
    total: int
    active: int
    completed: int
    succeeded: int
    errors: tuple[ItemError, ...]
    is_paused: bool
    is_processing: bool
    resume: bool
    started_at: datetime
    elapsed_ms: int

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def progress_percentage(self) -> float:
        """Calculate progress percentage (0-100)."""
        if self.total == 0:
            return 100.0 if not self.is_processing else 0.0
        return (self.completed / self.total) * 100


@dataclass
class BatchState:
    """Mutable state owned by the scheduler for the lifetime of one batch."""

    queue: deque[SourceItem]
    resume: bool = False
    batch_id: str = field(default_factory=lambda: uuid4().hex[:12])
    total: int = 0
    active_count: int = 0
    completed_count: int = 0
    success_count: int = 0
    error_list: list[ItemError] = field(default_factory=list)
    is_paused: bool = False
    is_processing: bool = True
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        self.total = len(self.queue)

    @property
    def is_drained(self) -> bool:
        return not self.queue and self.active_count == 0

    def snapshot(self) -> BatchProgress:
        return BatchProgress(
            batch_id=self.batch_id,
            total=self.total,
            active=self.active_count,
            completed=self.completed_count,
            succeeded=self.success_count,
            errors=tuple(self.error_list),
            is_paused=self.is_paused,
            is_processing=self.is_processing,
            resume=self.resume,
            started_at=self.started_at,
            elapsed_ms=int((datetime.now(timezone.utc) - self.started_at).total_seconds() * 1000),
        )
