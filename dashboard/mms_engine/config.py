"""
Configuration management for the membership engine.

All configuration is done via environment variables prefixed with ``MMS_``.
Settings are loaded with pydantic-settings so values are typed and validated
on load.

Invariants:
    - All settings have sensible defaults for local development
    - batch_limit never exceeds the store's hard atomic-batch limit (500)
    - Secrets are never logged

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Keep the MMS_ prefix for every new variable
"""

from __future__ import annotations

import logging
import os
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Hard limit imposed by the document store on one atomic batch.
MAX_BATCH_OPERATIONS = 500


class StoreBackend(str, Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class EngineSettings(BaseSettings):
    """Engine configuration loaded from environment."""

    # Document store
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY, description="memory or sqlite")
    data_dir: str = Field(default="./data", description="Directory for the SQLite database")
    database_file: str = Field(default="mms.db", description="SQLite file name inside data_dir")
    busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")

    # Collections
    members_collection: str = Field(default="members")
    events_collection: str = Field(default="events")

    # Propagation and import
    batch_limit: int = Field(default=MAX_BATCH_OPERATIONS, ge=1, le=MAX_BATCH_OPERATIONS)
    import_concurrency: int = Field(default=10, ge=1, description="Concurrent upserts per import")

    # Live queries
    fetch_cooldown_seconds: float = Field(default=120.0, ge=0, description="Manual fetch throttle")
    inactivity_delay_seconds: float = Field(
        default=600.0, ge=0, description="Hidden time before live queries disconnect"
    )

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")

    model_config = {"env_prefix": "MMS_"}

    @property
    def database_path(self) -> str:
        """Full path to the SQLite database file."""
        return os.path.join(self.data_dir, self.database_file)

    def validate_settings(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.members_collection == self.events_collection:
            raise ValueError("MMS_MEMBERS_COLLECTION and MMS_EVENTS_COLLECTION must differ")
        if self.log_format not in ("json", "text"):
            raise ValueError(f"Invalid MMS_LOG_FORMAT '{self.log_format}'. Must be one of: json, text")

        if self.store_backend == StoreBackend.SQLITE and not os.path.exists(self.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "database_path": self.database_path
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "members_collection": self.members_collection,
                "events_collection": self.events_collection,
                "batch_limit": self.batch_limit,
                "fetch_cooldown_seconds": self.fetch_cooldown_seconds,
                "inactivity_delay_seconds": self.inactivity_delay_seconds,
                "log_level": self.log_level,
            },
        )


def load_settings() -> EngineSettings:
    """Load and validate settings from the environment.

    Raises:
        ValueError: If configuration is invalid.
    """
    settings = EngineSettings()
    settings.validate_settings()
    return settings
