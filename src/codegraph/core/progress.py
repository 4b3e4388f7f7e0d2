"""User-facing progress feedback for CLI operations.

Design principles:
- Progress bar only on a TTY; plain lines otherwise (CI, pipes)
- Single line updates, no spam
- Suppress structlog console output while a live display is active

Usage::

    from codegraph.core.progress import EventRenderer, status

    status("Watching for changes", style="info")

    with EventRenderer() as renderer:
        await coordinator.index_directory()  # on_event=renderer
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import TracebackType

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn
from rich.table import Table

from codegraph.core.events import EventKind, IndexEvent, RunSummary, Severity

_console = Console(stderr=True)

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_SEVERITY_STYLES = {
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
    Severity.FATAL: "error",
}

_suppress_console_logs = threading.local()


def is_console_suppressed() -> bool:
    """Check if console logging is currently suppressed."""
    return getattr(_suppress_console_logs, "active", False)


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Pause structlog console output. File handlers keep receiving logs."""
    _suppress_console_logs.active = True
    try:
        yield
    finally:
        _suppress_console_logs.active = False


def _is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def status(message: str, *, style: str = "info", console: Console | None = None) -> None:
    """Print a styled status message to stderr."""
    prefix = _STYLES.get(style, "")
    (console or _console).print(f"{prefix}{message}", highlight=False)


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """Return ``"1 file"`` or ``"3 files"``."""
    if plural is None:
        plural = singular + "s"
    return f"{count} {singular if count == 1 else plural}"


def summary_table(summary: RunSummary) -> Table:
    """Render a run summary as a two-column table."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column(justify="right")
    rows = [
        ("added", summary.files_added),
        ("modified", summary.files_modified),
        ("deleted", summary.files_deleted),
        ("unchanged", summary.files_unchanged),
        ("skipped", summary.files_skipped),
        ("parse failures", summary.parse_failures),
        ("timeouts", summary.timeouts),
        ("ingest failures", summary.ingest_failures),
        ("internal errors", summary.internal_errors),
        ("unreadable dirs", summary.traversal_errors),
    ]
    for label, value in rows:
        if value:
            table.add_row(label, str(value))
    return table


class EventRenderer:
    """Event sink that draws index events on a Rich console.

    Progress events drive a single progress bar (TTY only); errors print
    as styled lines above it; ``complete`` prints a summary table.
    The renderer is callable, so it can be passed as ``on_event``.
    """

    def __init__(self, console: Console | None = None, *, live: bool | None = None) -> None:
        self._console = console or _console
        self._live = _is_tty() if live is None else live
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.summary: RunSummary | None = None
        self.errors: list[IndexEvent] = []

    def __call__(self, event: IndexEvent) -> None:
        if event.kind == EventKind.PROGRESS:
            self._on_progress(event)
        elif event.kind == EventKind.ERROR:
            self._on_error(event)
        else:
            self._on_complete(event)

    def _on_progress(self, event: IndexEvent) -> None:
        if self._progress is None:
            return
        if self._task_id is None:
            self._task_id = self._progress.add_task("Indexing", total=event.total or 0)
        self._progress.update(self._task_id, completed=event.processed, total=event.total)

    def _on_error(self, event: IndexEvent) -> None:
        self.errors.append(event)
        style = _SEVERITY_STYLES.get(event.severity or Severity.WARNING, "warning")
        label = f"[dim]{event.error_kind}[/dim] " if event.error_kind else ""
        status(f"{label}{event.message}", style=style, console=self._console)

    def _on_complete(self, event: IndexEvent) -> None:
        self._stop_progress()
        self.summary = event.summary
        failed = event.summary is not None and event.summary.failures > 0
        status(event.message, style="warning" if failed else "success", console=self._console)
        if event.summary is not None:
            self._console.print(summary_table(event.summary))

    def _stop_progress(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task_id = None
        _suppress_console_logs.active = False

    def __enter__(self) -> EventRenderer:
        if self._live:
            _suppress_console_logs.active = True
            self._progress = Progress(
                TextColumn("  {task.description}"),
                BarColumn(bar_width=30, style="cyan", complete_style="cyan"),
                TaskProgressColumn(),
                TextColumn("{task.completed}/{task.total} files"),
                console=self._console,
                transient=True,
            )
            self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._stop_progress()
