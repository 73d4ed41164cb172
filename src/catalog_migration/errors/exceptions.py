"""Custom exception hierarchy for catalog migration errors."""
from typing import Any, Optional


class MigrationEngineError(Exception):
    """Base exception for all catalog migration errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        """Initialize error with message and optional structured details."""
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Marketplace Client Errors
# =============================================================================


class CatalogClientError(MigrationEngineError):
    """Raised when a marketplace API call fails."""
    pass


class CatalogUnavailableError(CatalogClientError):
    """Raised when a marketplace is unreachable or answers with a 5xx."""
    pass


class DestinationValidationError(CatalogClientError):
    """Raised when the destination API rejects a payload.

    The message is the API's own error text, surfaced verbatim.
    """
    pass


# =============================================================================
# Item Migration Errors
# =============================================================================


class MissingPreconditionError(MigrationEngineError):
    """Raised when an item cannot be migrated because required data is absent."""
    pass


class CategoryNotDetectedError(MissingPreconditionError):
    """Raised when no destination category could be detected for an item."""
    pass


class NoImagesError(MissingPreconditionError):
    """Raised when none of an item's images could be uploaded."""
    pass


class ItemMigrationError(MigrationEngineError):
    """Raised when an item still fails after exhausting its retries.

    Carries the retry metadata the caller persists.
    """

    def __init__(
        self,
        message: str,
        retry_count: int,
        duration_ms: int,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.retry_count = retry_count
        self.duration_ms = duration_ms


# =============================================================================
# Batch Errors
# =============================================================================


class BatchError(MigrationEngineError):
    """Raised when a batch cannot be started."""
    pass


class BatchAlreadyRunningError(BatchError):
    """Raised when a batch is started while another one is processing."""
    pass


class NotEligibleError(BatchError):
    """Raised when the source catalog is too small for bulk migration."""
    pass


class NothingToResumeError(BatchError):
    """Raised when a resume run is requested but no failed items are queued."""
    pass


class BatchScheduledError(BatchError):
    """Raised when a batch is started by hand while a scheduled one is pending."""
    pass


class InvalidScheduleError(BatchError):
    """Raised when a schedule time cannot be parsed."""
    pass


# =============================================================================
# Persistence Errors
# =============================================================================


class StoreError(MigrationEngineError):
    """Raised when the persistent store cannot be read or written."""
    pass
