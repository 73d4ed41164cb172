"""Pydantic and dataclass models for the migration engine."""

from catalog_migration.models.catalog import (
    Dimensions,
    SourceItem,
    DestinationItem,
)
from catalog_migration.models.records import (
    AuditAction,
    TERMINAL_ITEM_ACTIONS,
    ResultRecord,
    AuditLogEntry,
    FailedItem,
)
from catalog_migration.models.outcome import (
    MigrationSuccess,
    MigrationFailure,
    MigrationOutcome,
)
from catalog_migration.models.batch import (
    ItemError,
    BatchProgress,
    BatchState,
)

__all__ = [
    # Catalog models
    "Dimensions",
    "SourceItem",
    "DestinationItem",
    # Persisted records
    "AuditAction",
    "TERMINAL_ITEM_ACTIONS",
    "ResultRecord",
    "AuditLogEntry",
    "FailedItem",
    # Outcomes
    "MigrationSuccess",
    "MigrationFailure",
    "MigrationOutcome",
    # Batch state
    "ItemError",
    "BatchProgress",
    "BatchState",
]
