"""Shared fixtures."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from codegraph.config.models import CodeGraphConfig, IndexerConfig, WatcherConfig
from codegraph.index._internal.db import Database, create_graph_schema
from codegraph.index._internal.parsing import ParseResult, get_scheme_for_path, parse_file


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with schema."""
    db = Database(temp_dir / "test.db")
    db.create_all()
    create_graph_schema(db.engine)
    yield db
    db.dispose()


@pytest.fixture
def parse_source() -> Callable[[str, str], ParseResult]:
    """Parse source text as if it lived at the given root-relative path."""

    def _parse(path: str, source: str) -> ParseResult:
        scheme = get_scheme_for_path(path)
        assert scheme is not None, f"no scheme for {path}"
        return parse_file(path, source.encode(), scheme)

    return _parse


@pytest.fixture
def write_files() -> Callable[[Path, dict[str, str]], None]:
    """Write a {relative path: content} mapping under a root."""

    def _write(root: Path, files: dict[str, str]) -> None:
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    return _write


@pytest.fixture
def fast_config() -> CodeGraphConfig:
    """Small pool, short timers, polling watcher."""
    return CodeGraphConfig(
        indexer=IndexerConfig(
            max_workers=2,
            parse_timeout_sec=5.0,
            ingest_max_retries=2,
            ingest_retry_base_delay_sec=0.01,
        ),
        watcher=WatcherConfig(
            debounce_sec=0.05,
            max_debounce_wait_sec=0.5,
            poll_interval_sec=0.05,
            force_polling=True,
        ),
    )
