"""Tests for the host event stream."""

from __future__ import annotations

from codegraph.core.errors import ParseError
from codegraph.core.events import EventEmitter, EventKind, IndexEvent, RunSummary, Severity


class TestRunSummary:
    """RunSummary counters."""

    def test_derived_counts(self) -> None:
        """failures and files_changed aggregate the raw counters."""
        summary = RunSummary(
            files_added=2,
            files_modified=1,
            files_deleted=1,
            parse_failures=1,
            timeouts=1,
            internal_errors=1,
            traversal_errors=1,
        )
        assert summary.files_changed == 4
        assert summary.failures == 4
        assert summary.to_dict()["failures"] == 4


class TestEventEmitter:
    """EventEmitter delivery semantics."""

    def test_without_sink_is_noop(self) -> None:
        """Emitting with no sink does nothing."""
        emitter = EventEmitter()
        emitter.progress("x", processed=1, total=2)
        emitter.complete(RunSummary())

    def test_progress_never_moves_backwards(self) -> None:
        """A late, lower counter is clamped to the last value."""
        events: list[IndexEvent] = []
        emitter = EventEmitter(events.append)
        emitter.progress("a", processed=3, total=10)
        emitter.progress("b", processed=2, total=10)
        assert [e.processed for e in events] == [3, 3]

    def test_complete_is_emitted_once(self) -> None:
        """A second complete for the same run is dropped."""
        events: list[IndexEvent] = []
        emitter = EventEmitter(events.append)
        emitter.complete(RunSummary(files_seen=1))
        emitter.complete(RunSummary(files_seen=1))
        assert [e.kind for e in events] == [EventKind.COMPLETE]

    def test_reset_starts_new_run(self) -> None:
        """After reset the counters and completion flag start over."""
        events: list[IndexEvent] = []
        emitter = EventEmitter(events.append)
        emitter.progress("a", processed=5, total=5)
        emitter.complete(RunSummary())
        emitter.reset()
        emitter.progress("b", processed=1, total=2)
        emitter.complete(RunSummary())
        assert [e.kind for e in events].count(EventKind.COMPLETE) == 2
        assert events[2].processed == 1

    def test_error_event_carries_kind_and_path(self) -> None:
        """Error events expose the error name, severity and path."""
        events: list[IndexEvent] = []
        emitter = EventEmitter(events.append)
        emitter.error(ParseError.timeout("a.py", 1.0), severity=Severity.ERROR)
        event = events[0]
        assert event.error_kind == "PARSE_TIMEOUT"
        assert event.path == "a.py"
        assert event.to_dict()["severity"] == "error"

    def test_broken_sink_does_not_raise(self) -> None:
        """Sink exceptions are logged, not propagated."""

        def sink(_event: IndexEvent) -> None:
            raise RuntimeError("host bug")

        EventEmitter(sink).progress("a", processed=1, total=1)
