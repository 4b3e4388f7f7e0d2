"""codegraph error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Index (traversal, parse, ingest, watch)
- 4xxx: Service surface (root, lookups)
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Index (3xxx)
    TRAVERSAL_UNREADABLE = 3001
    PARSE_UNPARSEABLE = 3101
    PARSE_TIMEOUT = 3102
    INGEST_CONNECTION_FAILED = 3201
    INGEST_TRANSACTION_FAILED = 3202
    WATCHER_OVERFLOW = 3301

    # Service (4xxx)
    ROOT_UNAVAILABLE = 4001
    FILE_NOT_FOUND = 4004

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class CodeGraphError(Exception):
    """Base error with structured context for host-facing events."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'PARSE_TIMEOUT')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses and event payloads."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(CodeGraphError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class TraversalError(CodeGraphError):
    """A directory under the root could not be read. Logged and skipped."""

    @classmethod
    def unreadable(cls, path: str, reason: str) -> "TraversalError":
        return cls(
            code=ErrorCode.TRAVERSAL_UNREADABLE,
            message=f"Cannot read directory {path}: {reason}",
            details={"path": path, "reason": reason},
        )


class ParseError(CodeGraphError):
    """A file could not be turned into a syntax tree.

    The file is skipped for the current run; its previous graph data stays.
    """

    @property
    def kind(self) -> str:
        """``Unparseable`` or ``Timeout``."""
        return "Timeout" if self.code == ErrorCode.PARSE_TIMEOUT else "Unparseable"

    @classmethod
    def unparseable(cls, path: str, reason: str) -> "ParseError":
        return cls(
            code=ErrorCode.PARSE_UNPARSEABLE,
            message=f"Cannot parse {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def timeout(cls, path: str, budget_sec: float) -> "ParseError":
        return cls(
            code=ErrorCode.PARSE_TIMEOUT,
            message=f"Parsing {path} exceeded {budget_sec:.1f}s",
            details={"path": path, "budget_sec": budget_sec},
        )


class IngestError(CodeGraphError):
    """Graph-store write failures. Always retryable."""

    @classmethod
    def connection_failed(cls, reason: str) -> "IngestError":
        return cls(
            code=ErrorCode.INGEST_CONNECTION_FAILED,
            message=f"Graph store unavailable: {reason}",
            retryable=True,
            details={"reason": reason},
        )

    @classmethod
    def transaction_failed(cls, path: str, reason: str) -> "IngestError":
        return cls(
            code=ErrorCode.INGEST_TRANSACTION_FAILED,
            message=f"Transaction for {path} failed: {reason}",
            retryable=True,
            details={"path": path, "reason": reason},
        )


class WatcherOverflow(CodeGraphError):
    """Change notifications were lost; a full rescan is required."""

    @classmethod
    def dropped(cls, count: int) -> "WatcherOverflow":
        return cls(
            code=ErrorCode.WATCHER_OVERFLOW,
            message=f"Watcher dropped {count} change notification(s); rescanning",
            details={"dropped": count},
        )

    @classmethod
    def backend_failed(cls, reason: str) -> "WatcherOverflow":
        return cls(
            code=ErrorCode.WATCHER_OVERFLOW,
            message=f"Watcher backend failed: {reason}; rescanning",
            details={"reason": reason},
        )


class RootError(CodeGraphError):
    """The indexed root itself is unusable. Aborts the run."""

    @classmethod
    def unavailable(cls, root: str, reason: str) -> "RootError":
        return cls(
            code=ErrorCode.ROOT_UNAVAILABLE,
            message=f"Cannot index {root}: {reason}",
            details={"root": root, "reason": reason},
        )


class NotFoundError(CodeGraphError):
    """Requested file does not exist under the root."""

    @classmethod
    def file(cls, path: str) -> "NotFoundError":
        return cls(
            code=ErrorCode.FILE_NOT_FOUND,
            message=f"File not found: {path}",
            details={"path": path},
        )


class InternalError(CodeGraphError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
