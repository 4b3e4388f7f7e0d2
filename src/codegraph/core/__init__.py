"""Core module exports."""

from codegraph.core.errors import (
    CodeGraphError,
    ConfigError,
    ErrorCode,
    IngestError,
    InternalError,
    NotFoundError,
    ParseError,
    RootError,
    TraversalError,
    WatcherOverflow,
)
from codegraph.core.events import EventKind, IndexEvent, RunSummary, Severity
from codegraph.core.logging import (
    clear_run_id,
    configure_logging,
    get_run_id,
    set_run_id,
)

__all__ = [
    # Errors
    "CodeGraphError",
    "ConfigError",
    "ErrorCode",
    "IngestError",
    "InternalError",
    "NotFoundError",
    "ParseError",
    "RootError",
    "TraversalError",
    "WatcherOverflow",
    # Events
    "EventKind",
    "IndexEvent",
    "RunSummary",
    "Severity",
    # Logging
    "clear_run_id",
    "configure_logging",
    "get_run_id",
    "set_run_id",
]
