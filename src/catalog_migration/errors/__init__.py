"""Error handling module."""
from catalog_migration.errors.exceptions import (
    MigrationEngineError,
    CatalogClientError,
    CatalogUnavailableError,
    DestinationValidationError,
    MissingPreconditionError,
    CategoryNotDetectedError,
    NoImagesError,
    ItemMigrationError,
    BatchError,
    BatchAlreadyRunningError,
    NotEligibleError,
    NothingToResumeError,
    BatchScheduledError,
    InvalidScheduleError,
    StoreError,
)

__all__ = [
    "MigrationEngineError",
    "CatalogClientError",
    "CatalogUnavailableError",
    "DestinationValidationError",
    "MissingPreconditionError",
    "CategoryNotDetectedError",
    "NoImagesError",
    "ItemMigrationError",
    "BatchError",
    "BatchAlreadyRunningError",
    "NotEligibleError",
    "NothingToResumeError",
    "BatchScheduledError",
    "InvalidScheduleError",
    "StoreError",
]
