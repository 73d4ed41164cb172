"""Tagged result of migrating one item under the retry policy."""
from dataclasses import dataclass
from typing import Union

from catalog_migration.errors.exceptions import ItemMigrationError
from catalog_migration.models.catalog import DestinationItem


@dataclass(frozen=True)
class MigrationSuccess:
    """The operation eventually succeeded."""

    created_item: DestinationItem
    attempt_count: int
    duration_ms: int

    @property
    def retry_count(self) -> int:
        return self.attempt_count - 1

    @property
    def succeeded(self) -> bool:
        return True

    def unwrap(self) -> DestinationItem:
        return self.created_item


@dataclass(frozen=True)
class MigrationFailure:
    """Every attempt failed; `error` is the last exception raised."""

    reason: str
    error: BaseException
    attempt_count: int
    duration_ms: int

    @property
    def retry_count(self) -> int:
        return self.attempt_count - 1

    @property
    def succeeded(self) -> bool:
        return False

    def unwrap(self) -> DestinationItem:
        """Raise the failure as an ItemMigrationError carrying retry metadata."""
        raise ItemMigrationError(
            self.reason,
            retry_count=self.retry_count,
            duration_ms=self.duration_ms,
            details={"error_type": type(self.error).__name__},
        ) from self.error


MigrationOutcome = Union[MigrationSuccess, MigrationFailure]
