"""Tests for error types and codes."""

import pytest

from codegraph.core.errors import (
    CodeGraphError,
    ConfigError,
    ErrorCode,
    IngestError,
    NotFoundError,
    ParseError,
    RootError,
    TraversalError,
    WatcherOverflow,
)


class TestErrorCode:
    """Error code value tests."""

    @pytest.mark.parametrize(
        ("code", "expected_range"),
        [
            (ErrorCode.CONFIG_PARSE_ERROR, 2000),
            (ErrorCode.TRAVERSAL_UNREADABLE, 3000),
            (ErrorCode.PARSE_TIMEOUT, 3000),
            (ErrorCode.INGEST_TRANSACTION_FAILED, 3000),
            (ErrorCode.WATCHER_OVERFLOW, 3000),
            (ErrorCode.ROOT_UNAVAILABLE, 4000),
            (ErrorCode.INTERNAL_ERROR, 9000),
        ],
    )
    def test_code_in_range(self, code: ErrorCode, expected_range: int) -> None:
        """Error codes fall within their designated numeric range."""
        assert expected_range <= code.value < expected_range + 1000


class TestCodeGraphError:
    """Base error behavior tests."""

    def test_to_dict_serializes_all_fields(self) -> None:
        """Error serializes to dict with all required fields."""
        error = CodeGraphError(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message="Test message",
            retryable=True,
            details={"key": "value"},
        )
        assert error.to_dict() == {
            "code": 2001,
            "error": "CONFIG_PARSE_ERROR",
            "message": "Test message",
            "retryable": True,
            "details": {"key": "value"},
        }

    def test_str_includes_code_and_name(self) -> None:
        """String form carries the numeric code and error name."""
        error = RootError.unavailable("/missing", "does not exist")
        assert str(error) == "[4001] ROOT_UNAVAILABLE: Cannot index /missing: does not exist"

    def test_is_raisable(self) -> None:
        """Errors are real exceptions."""
        with pytest.raises(CodeGraphError) as exc_info:
            raise NotFoundError.file("a.py")
        assert exc_info.value.details == {"path": "a.py"}


class TestFactories:
    """Classmethod factory tests."""

    def test_config_errors(self) -> None:
        """Config factories fill path, field and reason details."""
        parse = ConfigError.parse_error("/x.yaml", "bad indent")
        assert parse.code == ErrorCode.CONFIG_PARSE_ERROR
        assert parse.details == {"path": "/x.yaml", "reason": "bad indent"}

        invalid = ConfigError.invalid_value("indexer.max_workers", 0, "too small")
        assert invalid.details["field"] == "indexer.max_workers"
        assert invalid.details["value"] == "0"

    def test_traversal_error(self) -> None:
        """Traversal errors record the unreadable directory."""
        err = TraversalError.unreadable("secret", "Permission denied")
        assert err.error_name == "TRAVERSAL_UNREADABLE"
        assert err.details["path"] == "secret"
        assert not err.retryable

    def test_parse_error_kinds(self) -> None:
        """Parse errors distinguish Unparseable from Timeout."""
        assert ParseError.unparseable("a.py", "boom").kind == "Unparseable"
        timeout = ParseError.timeout("a.py", 2.5)
        assert timeout.kind == "Timeout"
        assert timeout.details == {"path": "a.py", "budget_sec": 2.5}
        assert "2.5s" in timeout.message

    def test_ingest_errors_are_retryable(self) -> None:
        """Both ingest failures are marked retryable."""
        assert IngestError.connection_failed("locked").retryable
        failed = IngestError.transaction_failed("a.py", "disk full")
        assert failed.retryable
        assert failed.details["path"] == "a.py"

    def test_watcher_overflow(self) -> None:
        """Overflow errors share one code whatever the cause."""
        dropped = WatcherOverflow.dropped(12)
        backend = WatcherOverflow.backend_failed("inotify limit")
        assert dropped.code == backend.code == ErrorCode.WATCHER_OVERFLOW
        assert dropped.details == {"dropped": 12}
        assert backend.details == {"reason": "inotify limit"}
