"""Host-facing event stream: progress, error, complete.

Events are plain immutable records handed to a single ``on_event`` callable.
Each occurrence is emitted once; hosts may treat the stream as an
append-only log.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from codegraph.core.errors import CodeGraphError

logger = structlog.get_logger()


class EventKind(Enum):
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETE = "complete"


class Severity(Enum):
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


@dataclass
class RunSummary:
    """Counters for one index/refresh run. Degraded runs still complete."""

    root: str = ""
    files_seen: int = 0
    files_added: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    parse_failures: int = 0
    timeouts: int = 0
    ingest_failures: int = 0
    internal_errors: int = 0
    traversal_errors: int = 0
    duration_sec: float = 0.0

    @property
    def failures(self) -> int:
        return (
            self.parse_failures
            + self.timeouts
            + self.ingest_failures
            + self.internal_errors
            + self.traversal_errors
        )

    @property
    def files_changed(self) -> int:
        return self.files_added + self.files_modified + self.files_deleted

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["failures"] = self.failures
        return data


@dataclass(frozen=True)
class IndexEvent:
    """A single event delivered to the host."""

    kind: EventKind
    message: str
    error_kind: str | None = None
    severity: Severity | None = None
    processed: int | None = None
    total: int | None = None
    path: str | None = None
    summary: RunSummary | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.error_kind is not None:
            data["error_kind"] = self.error_kind
        if self.severity is not None:
            data["severity"] = self.severity.value
        if self.processed is not None:
            data["processed"] = self.processed
            data["total"] = self.total
        if self.path is not None:
            data["path"] = self.path
        if self.summary is not None:
            data["summary"] = self.summary.to_dict()
        if self.details:
            data["details"] = self.details
        return data


EventSink = Callable[[IndexEvent], None]


class EventEmitter:
    """Fans events out to the host callback.

    Progress counters never move backwards; a run emits at most one
    ``complete``.
    """

    def __init__(self, sink: EventSink | None = None) -> None:
        self._sink = sink
        self._last_processed = 0
        self._completed = False

    def reset(self) -> None:
        """Start a new run."""
        self._last_processed = 0
        self._completed = False

    def _deliver(self, event: IndexEvent) -> None:
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            # Sink failures are logged, never propagated
            logger.error("event_sink_failed", event_kind=event.kind.value, error=str(e), exc_info=True)

    def progress(self, message: str, *, processed: int, total: int, path: str | None = None) -> None:
        processed = max(processed, self._last_processed)
        self._last_processed = processed
        self._deliver(
            IndexEvent(
                kind=EventKind.PROGRESS,
                message=message,
                processed=processed,
                total=max(total, processed),
                path=path,
            )
        )

    def error(self, err: CodeGraphError, *, severity: Severity = Severity.WARNING) -> None:
        self._deliver(
            IndexEvent(
                kind=EventKind.ERROR,
                message=err.message,
                error_kind=err.error_name,
                severity=severity,
                path=err.details.get("path"),
                details=err.details,
            )
        )

    def complete(self, summary: RunSummary) -> None:
        if self._completed:
            return
        self._completed = True
        self._deliver(
            IndexEvent(
                kind=EventKind.COMPLETE,
                message=(
                    f"Indexed {summary.files_seen} files "
                    f"({summary.files_changed} changed, {summary.failures} failed)"
                ),
                summary=summary,
            )
        )
