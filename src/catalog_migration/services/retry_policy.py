"""
Retry Policy
============

Bounded retries around a single item migration.

`with_retries` runs the operation once, then up to `max_retries` more times,
sleeping `backoff(retry_number)` between attempts. It never raises for an
operation error: the result is a MigrationSuccess or MigrationFailure that
carries the attempt count and wall time since the first attempt.

Backoff strategies are plain tenacity wait objects, so the scheduler does
not care which one is in use:

    policy = RetryPolicy(max_retries=2, backoff=linear_backoff(0.5))  # 0.5s, 1.0s
    policy = RetryPolicy(max_retries=4, backoff=jittered_backoff(0.5, max_wait=8))
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
    wait_none,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from catalog_migration.config import MigrationSettings
from catalog_migration.errors.exceptions import MigrationEngineError
from catalog_migration.models.catalog import DestinationItem
from catalog_migration.models.outcome import (
    MigrationFailure,
    MigrationOutcome,
    MigrationSuccess,
)

logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[DestinationItem]]
Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# Backoff Strategies
# =============================================================================


def linear_backoff(step: float = 0.5) -> wait_base:
    """Wait `step * retry_number` seconds: 0.5s, 1.0s, 1.5s, ..."""
    return wait_incrementing(start=step, increment=step)


def exponential_backoff(multiplier: float = 0.5, max_wait: float = 30.0) -> wait_base:
    """Wait `multiplier * 2 ** (retry_number - 1)` seconds, capped at `max_wait`."""
    return wait_exponential(multiplier=multiplier, max=max_wait)


def jittered_backoff(multiplier: float = 0.5, max_wait: float = 30.0) -> wait_base:
    """Random wait in [0, exponential window], capped at `max_wait`."""
    return wait_random_exponential(multiplier=multiplier, max=max_wait)


def no_backoff() -> wait_base:
    return wait_none()


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait in between.

    Attributes:
        max_retries: Attempts allowed after the first one (2 -> 3 attempts)
        backoff: tenacity wait strategy evaluated before each retry
    """
    max_retries: int = 2
    backoff: wait_base = field(default_factory=linear_backoff)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_settings(cls, migration_settings: MigrationSettings) -> "RetryPolicy":
        return cls(
            max_retries=migration_settings.max_retries,
            backoff=linear_backoff(migration_settings.retry_step_seconds),
        )


class RetryListener(Protocol):
    """Lifecycle hooks for one retried operation.

    Implementations must not raise; `with_retries` does not guard them.
    """

    async def on_start(self) -> None: ...

    async def on_retry(self, retry_number: int, error: BaseException) -> None: ...

    async def on_success(self, outcome: MigrationSuccess) -> None: ...

    async def on_failure(self, outcome: MigrationFailure) -> None: ...


def describe_error(error: BaseException) -> str:
    """Human-readable error text recorded in the ledger and audit trail."""
    if isinstance(error, MigrationEngineError):
        return error.message
    return str(error) or type(error).__name__


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def with_retries(
    operation: Operation,
    policy: Optional[RetryPolicy] = None,
    listener: Optional[RetryListener] = None,
    sleep: Sleep = asyncio.sleep,
) -> MigrationOutcome:
    """
    Run `operation` under `policy` and report the terminal outcome.

    Args:
        operation: Zero-argument coroutine factory performing one attempt
        policy: Retry bound and backoff (defaults to 2 retries, linear 0.5s)
        listener: Optional lifecycle hooks (start, each retry, terminal)
        sleep: Awaitable used for backoff waits

    Returns:
        MigrationSuccess or MigrationFailure with attempt_count and duration_ms
    """
    policy = policy or RetryPolicy()
    started = time.monotonic()
    attempts = 0

    if listener is not None:
        await listener.on_start()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.backoff,
        retry=retry_if_exception_type(Exception),
        sleep=sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                attempts += 1
                try:
                    created = await operation()
                except Exception as e:
                    if attempts < policy.max_attempts:
                        logger.debug(
                            "attempt_failed_retrying",
                            attempt=attempts,
                            max_attempts=policy.max_attempts,
                            error=describe_error(e),
                        )
                        if listener is not None:
                            await listener.on_retry(attempts, e)
                    raise
    except Exception as e:
        failure = MigrationFailure(
            reason=describe_error(e),
            error=e,
            attempt_count=attempts,
            duration_ms=_elapsed_ms(started),
        )
        if listener is not None:
            await listener.on_failure(failure)
        return failure

    success = MigrationSuccess(
        created_item=created,
        attempt_count=attempts,
        duration_ms=_elapsed_ms(started),
    )
    if listener is not None:
        await listener.on_success(success)
    return success
