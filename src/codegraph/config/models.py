"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (CODEGRAPH__SECTION__KEY)
3. Repo YAML (<root>/.codegraph/config.yaml)
4. Global YAML (~/.config/codegraph/config.yaml)
5. Built-in defaults (this file)

Examples:
    CODEGRAPH__LOGGING__LEVEL=DEBUG
    CODEGRAPH__INDEXER__MAX_WORKERS=4
    CODEGRAPH__WATCHER__DEBOUNCE_SEC=0.5
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _default_workers() -> int:
    return max(1, os.cpu_count() or 1)


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        CODEGRAPH__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every skipped path.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class IndexConfig(BaseModel):
    """Index configuration.

    Env vars:
        CODEGRAPH__INDEX__INDEX_PATH: Override index storage location
        CODEGRAPH__INDEX__MAX_FILE_SIZE_MB: Skip files larger than this
        CODEGRAPH__INDEX__RESPECT_GITIGNORE: Honour .gitignore files under the root
    """

    index_path: str | None = Field(
        default=None,
        description="Override index storage location. Default: .codegraph/ in the root.",
    )
    max_file_size_mb: int = Field(
        default=10,
        description="Skip files larger than this (MB). Generated bundles slow parsing.",
    )
    respect_gitignore: bool = Field(
        default=True,
        description="Combine .gitignore patterns found anywhere under the root.",
    )
    extra_ignore_patterns: list[str] = Field(
        default_factory=list,
        description="Additional gitignore-style patterns, relative to the root.",
    )
    extra_prune_dirs: list[str] = Field(
        default_factory=list,
        description="Additional directory names never descended into.",
    )

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_max_file_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_file_size_mb must be positive, got {v}")
        return v


class IndexerConfig(BaseModel):
    """Worker pool configuration.

    Env vars:
        CODEGRAPH__INDEXER__MAX_WORKERS: Concurrent file workers
        CODEGRAPH__INDEXER__QUEUE_MAX_SIZE: Max queued paths before overflow
        CODEGRAPH__INDEXER__PARSE_TIMEOUT_SEC: Per-file parse budget
    """

    max_workers: int = Field(
        default_factory=_default_workers,
        description="Concurrent file workers. Defaults to the CPU count.",
    )
    queue_max_size: int = Field(
        default=10000,
        description="Max distinct queued paths. Overflow triggers a full rescan.",
    )
    parse_timeout_sec: float = Field(
        default=10.0,
        description="Time budget for parsing a single file.",
    )
    ingest_max_retries: int = Field(
        default=3,
        description="Retries for a failed per-file graph transaction.",
    )
    ingest_retry_base_delay_sec: float = Field(
        default=0.2,
        description="Base delay between ingest retries (exponential backoff).",
    )

    @field_validator("max_workers", "queue_max_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Must be at least 1, got {v}")
        return v

    @field_validator("parse_timeout_sec")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"parse_timeout_sec must be positive, got {v}")
        return v


class WatcherConfig(BaseModel):
    """File watcher configuration.

    Env vars:
        CODEGRAPH__WATCHER__DEBOUNCE_SEC: Quiet window before a burst is flushed
        CODEGRAPH__WATCHER__FORCE_POLLING: Use mtime polling instead of native events
    """

    debounce_sec: float = Field(
        default=0.3,
        description="Sliding debounce window. Repeated events for a path inside it coalesce.",
    )
    max_debounce_wait_sec: float = Field(
        default=2.0,
        description="Upper bound on how long a continuous burst is held back.",
    )
    poll_interval_sec: float = Field(
        default=1.0,
        description="Polling interval for cross-filesystem mounts.",
    )
    force_polling: bool = Field(
        default=False,
        description="Always poll mtimes instead of using native notifications.",
    )


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        CODEGRAPH__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        CODEGRAPH__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts for locked database errors.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )


class LimitsConfig(BaseModel):
    """Query limit defaults.

    Env vars:
        CODEGRAPH__LIMITS__SEARCH_DEFAULT: Default search results
        CODEGRAPH__LIMITS__SEARCH_MAX: Hard cap on search results
    """

    search_default: int = Field(default=20, description="Default search results.")
    search_max: int = Field(default=500, description="Maximum search results per query.")


class CodeGraphConfig(BaseModel):
    """Root configuration for codegraph.

    All settings can be configured via:
    1. Environment variables: CODEGRAPH__SECTION__KEY
    2. YAML config files (repo or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
