"""Pydantic models persisted by the results ledger, audit trail and failed-item queue."""
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from catalog_migration.models.catalog import SourceItem


class AuditAction(str, Enum):
    """Lifecycle events written to the audit trail."""
    BATCH_START = "BATCH_START"
    ITEM_START = "ITEM_START"
    ITEM_RETRY = "ITEM_RETRY"
    ITEM_SUCCESS = "ITEM_SUCCESS"
    ITEM_FAILED = "ITEM_FAILED"
    BATCH_COMPLETE = "BATCH_COMPLETE"
    SCHEDULE_SET = "SCHEDULE_SET"


TERMINAL_ITEM_ACTIONS = frozenset({AuditAction.ITEM_SUCCESS, AuditAction.ITEM_FAILED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultRecord(BaseModel):
    """Outcome of one item's migration, as shown in the history and CSV export.

    Attributes:
        id: Source item identifier
        name: Source item name at the time of migration
        status: success or error
        error: Final error message (error status only)
        retry_count: Retries performed after the first attempt
        duration_ms: Wall time from first attempt to settlement
        timestamp: When the outcome was recorded (UTC)
    """

    id: int
    name: str = ""
    status: Literal["success", "error"]
    error: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("error", mode="before")
    @classmethod
    def empty_error_is_none(cls, v: Optional[str]) -> Optional[str]:
        """CSV exports write a missing error as an empty cell."""
        if v == "":
            return None
        return v


class AuditLogEntry(BaseModel):
    """One lifecycle event in the audit trail."""

    timestamp: datetime = Field(default_factory=_utcnow)
    action: AuditAction
    details: str = ""
    session_id: str


class FailedItem(SourceItem):
    """A source item whose last migration attempt failed after all retries."""

    error: str = ""

    @classmethod
    def from_item(cls, item: SourceItem, error: str) -> "FailedItem":
        """Attach the last known error to a source item."""
        return cls(**item.model_dump(), error=error)

    def to_source_item(self) -> SourceItem:
        """Drop the error so the item can be queued again."""
        return SourceItem(**self.model_dump(exclude={"error"}))
