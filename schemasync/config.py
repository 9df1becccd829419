"""
Configuration for SchemaSync.

Settings are read from SCHEMASYNC_* environment variables (and an optional
.env file) through pydantic-settings; every setting has a default suitable
for local development.

Invariants:
    - validate_config() is called before any ledger or database access
    - Secrets are never logged

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Mirror new retry settings in RetryPolicy.from_settings
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

from .runtime.retry import DEFAULT_RETRYABLE

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


class Settings(BaseSettings):
    """SchemaSync configuration loaded from environment."""

    # Ledger
    ledger_path: str = Field(default="./schemasync-ledger.db", description="SQLite ledger file")
    target: str = Field(default="default", description="Name of the live database in the ledger")
    stale_pending_seconds: int = Field(
        default=3600,
        description="Age after which a pending ledger entry may be superseded (0 disables)",
    )

    # Planning
    redefinition_threshold: int = Field(
        default=4,
        description="Changed properties at which a full redefinition replaces targeted ALTERs",
    )

    # Retry of connectivity failures
    retry_max_attempts: int = Field(default=5, description="Attempts per statement, including the first")
    retry_base_delay_ms: int = Field(default=100, description="Delay before the first retry")
    retry_max_delay_ms: int = Field(default=5000, description="Upper bound for a single retry delay")
    retry_multiplier: float = Field(default=2.0, description="Backoff growth factor")
    retryable_errors: list[str] = Field(
        default=list(DEFAULT_RETRYABLE),
        description="Exception class names treated as connectivity failures",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="json", description="json or text")

    model_config = {"env_prefix": "SCHEMASYNC_", "env_file": ".env", "extra": "ignore"}

    def validate_config(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.redefinition_threshold < 1:
            raise ValueError("SCHEMASYNC_REDEFINITION_THRESHOLD must be at least 1")
        if self.retry_max_attempts < 1:
            raise ValueError("SCHEMASYNC_RETRY_MAX_ATTEMPTS must be at least 1")
        if self.retry_base_delay_ms < 0 or self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError("Retry delays must satisfy 0 <= base <= max")
        if self.retry_multiplier < 1:
            raise ValueError("SCHEMASYNC_RETRY_MULTIPLIER must be at least 1")
        if self.stale_pending_seconds < 0:
            raise ValueError("SCHEMASYNC_STALE_PENDING_SECONDS must not be negative")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"SCHEMASYNC_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"SCHEMASYNC_LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")
        if not self.target:
            raise ValueError("SCHEMASYNC_TARGET must not be empty")

        if not Path(self.ledger_path).parent.exists():
            logger.warning(
                f"Ledger directory does not exist: {Path(self.ledger_path).parent}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        logger.info(
            "SchemaSync configuration loaded",
            extra={
                "ledger_path": self.ledger_path,
                "target": self.target,
                "redefinition_threshold": self.redefinition_threshold,
                "retry_max_attempts": self.retry_max_attempts,
                "stale_pending_seconds": self.stale_pending_seconds,
                "log_level": self.log_level,
            },
        )
