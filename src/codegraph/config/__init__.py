"""Config module exports."""

from codegraph.config.loader import get_db_path, get_index_dir, load_config
from codegraph.config.models import (
    CodeGraphConfig,
    IndexConfig,
    IndexerConfig,
    LoggingConfig,
    WatcherConfig,
)

__all__ = [
    "load_config",
    "get_db_path",
    "get_index_dir",
    "CodeGraphConfig",
    "IndexConfig",
    "IndexerConfig",
    "LoggingConfig",
    "WatcherConfig",
]
