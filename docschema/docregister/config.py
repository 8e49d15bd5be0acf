"""
Configuration for the document register.

Uses pydantic-settings for environment variable loading. Nothing is read
from config files; every setting has a default suitable for local use.

Invariants:
    - RegisterSettings reads DOCREG_* variables
    - ComparatorSettings reads DOCREG_COMPARE_* variables
    - Invalid values fail fast with a pydantic ValidationError

How to change safely:
    - Add new settings with defaults that keep current behavior
    - Keep env prefixes stable; deployments depend on them
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    """Supported storage adapter backends."""

    MEMORY = "memory"
    FILE = "file"


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


class RegisterSettings(BaseSettings):
    """Register configuration loaded from environment."""

    # Register identity
    register_name: str = Field(default="default", description="Name reported in exports")
    schema_id: str | None = Field(default=None, description="Default schema id for new entries")

    # Audit log
    enable_audit_log: bool = Field(default=True, description="Record ADD/UPDATE/ARCHIVE events")
    audit_log_max_entries: int | None = Field(
        default=None,
        ge=1,
        description="Keep only the newest N audit entries (lossy); unset = unbounded",
    )

    # Storage
    storage_backend: StorageBackend = Field(default=StorageBackend.MEMORY)
    storage_path: str = Field(default="./docregister-data", description="Directory for file storage")
    storage_extension: str = Field(default=".json")

    # Listing and search defaults
    default_list_limit: int = Field(default=100, ge=1)
    default_search_limit: int = Field(default=50, ge=1)

    # Batch helpers
    batch_concurrency: int = Field(default=8, ge=1, description="Max in-flight adapter calls")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.TEXT)

    # HTTP surface
    host: str = Field(default="0.0.0.0", description="HTTP bind host")
    port: int = Field(default=8090, description="HTTP bind port")
    cors_origins: list[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])

    model_config = {"env_prefix": "DOCREG_"}

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Register configuration loaded",
            extra={
                "register_name": self.register_name,
                "storage_backend": self.storage_backend.value,
                "storage_path": self.storage_path
                if self.storage_backend == StorageBackend.FILE
                else None,
                "audit_log": self.enable_audit_log,
                "audit_log_max_entries": self.audit_log_max_entries,
                "log_level": self.log_level,
            },
        )


class ComparatorSettings(BaseSettings):
    """Comparator configuration loaded from environment."""

    ignore_fields: list[str] = Field(
        default=["extraction_id", "timestamp", "duration_ms"],
        description="Top-level data fields skipped by compare()",
    )
    deep_compare: bool = Field(default=True, description="Recurse into nested mappings")
    significance_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    similarity_threshold: float = Field(default=0.9, ge=0.0, le=1.0)

    model_config = {"env_prefix": "DOCREG_COMPARE_"}
