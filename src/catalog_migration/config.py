"""Configuration management using pydantic-settings."""
import logging
import sys
from enum import Enum
from typing import Any, Literal, Optional

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreBackend(str, Enum):
    """Supported persistence backends for the migration logs."""
    REDIS = "redis"
    MEMORY = "memory"


class MigrationSettings(BaseSettings):
    """Batch migration tuning loaded from environment variables.

    All settings prefixed with MIGRATION_ (e.g., MIGRATION_CONCURRENCY_LIMIT=3)
    """

    # Scheduler Configuration
    concurrency_limit: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Maximum number of items migrated concurrently"
    )
    pause_poll_interval_seconds: float = Field(
        default=0.3,
        gt=0,
        le=10.0,
        description="How often a paused batch re-checks whether it may continue"
    )

    # Retry Configuration
    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Additional attempts after the first failure (default: 2, i.e. 3 attempts)"
    )
    retry_step_seconds: float = Field(
        default=0.5,
        ge=0,
        le=60.0,
        description="Linear backoff step: wait step * retry_number before each retry"
    )

    # Payload Configuration
    price_multiplier: int = Field(
        default=10,
        ge=1,
        description="Destination price units per source price unit (toman -> rial)"
    )
    default_stock: int = Field(
        default=1,
        ge=0,
        description="Stock assigned to created destination items"
    )
    default_preparation_days: int = Field(
        default=3,
        ge=0,
        le=60,
        description="Preparation days assigned to created destination items"
    )

    # Planning Diagnostics
    near_duplicate_threshold: float = Field(
        default=92.0,
        ge=0,
        le=100,
        description="Fuzzy score >= this flags a missing item as a likely duplicate"
    )

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class CatalogSettings(BaseSettings):
    """Marketplace API configuration.

    All settings prefixed with CATALOG_ (e.g., CATALOG_SOURCE_URL=https://...)
    """

    source_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the source marketplace API"
    )
    source_shop_url: str = Field(
        default="",
        description="Shop URL identifying the source store"
    )
    source_token: str = Field(
        default="",
        description="Bearer token for the source marketplace"
    )
    destination_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the destination marketplace API"
    )
    destination_token: str = Field(
        default="",
        description="Bearer token for the destination marketplace"
    )
    destination_vendor_id: Optional[int] = Field(
        default=None,
        description="Vendor identifier on the destination marketplace"
    )
    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Request timeout in seconds"
    )
    max_pages: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Safety cap on pages fetched when listing a catalog"
    )

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    redis_url: Optional[str] = None

    # Persistence Configuration
    store_backend: StoreBackend = StoreBackend.REDIS
    store_key_prefix: str = "catalog-migration:"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    environment: Literal["development", "staging", "production"] = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **kwargs: Any):
        """Initialize settings and build derived values."""
        super().__init__(**kwargs)
        # Build Redis URL if not provided
        if not self.redis_url:
            auth = f":{self.redis_password}@" if self.redis_password else ""
            self.redis_url = f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# Global settings instances
settings = Settings()
migration_settings = MigrationSettings()
catalog_settings = CatalogSettings()


def configure_logging(log_level: str = "INFO", json_output: Optional[bool] = None) -> None:
    """Configure structlog.

    JSON lines in production, colored console output otherwise.

    Args:
        log_level: Standard library level name
        json_output: Force JSON rendering on or off (defaults to production check)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    if json_output is None:
        json_output = settings.is_production

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
