"""
Configuration for fieldstore.

Settings come from environment variables prefixed with FIELDSTORE_ (or
from keyword arguments in tests). Every setting has a default suitable
for local development: an in-memory SQLite database and text logs.

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Log new settings in log_config()
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import json_log_formatter
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class LogFormat(str, Enum):
    """Supported log output formats."""

    TEXT = "text"
    JSON = "json"


class FieldStoreSettings(BaseSettings):
    """fieldstore configuration.

    Attributes:
        database_path: SQLite database file, or ":memory:"
        wal_mode: Use SQLite WAL journal mode (file databases only)
        busy_timeout_ms: How long a connection waits on a locked database
        cache_size_pages: SQLite page cache size (negative means KiB)
        foreign_keys: Enforce SQLite foreign key constraints
        static_cache: Global switch for the per-type entity cache
        schema_file: Optional YAML (or JSON) schema loaded at startup
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (text, json)
    """

    database_path: str = Field(default=":memory:")
    wal_mode: bool = Field(default=True)
    busy_timeout_ms: int = Field(default=5000, ge=0)
    cache_size_pages: int = Field(default=-64000)
    foreign_keys: bool = Field(default=True)
    static_cache: bool = Field(default=True, description="Disable to always read entities from storage")
    schema_file: Optional[str] = Field(default=None)
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.TEXT)

    model_config = SettingsConfigDict(env_prefix="FIELDSTORE_")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level '{value}'")
        return level

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "fieldstore configuration loaded",
            extra={
                "database_path": self.database_path,
                "wal_mode": self.wal_mode,
                "static_cache": self.static_cache,
                "schema_file": self.schema_file,
                "log_level": self.log_level,
                "log_format": self.log_format.value,
            },
        )


def setup_logging(settings: FieldStoreSettings) -> None:
    """Configure the root logger from settings.

    Args:
        settings: fieldstore settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == LogFormat.JSON:
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
