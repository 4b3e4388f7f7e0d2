"""Tests for the debounced file watcher."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from watchfiles import Change

from codegraph.config.models import WatcherConfig
from codegraph.core.errors import ErrorCode, WatcherOverflow
from codegraph.index._internal.ignore import IgnoreChecker
from codegraph.index._internal.watcher import FileWatcher, PathEvent, PathQueue
from codegraph.index._internal.watcher import watcher as watcher_module
from codegraph.index._internal.watcher.watcher import (
    _collect_watch_dirs,
    _is_cross_filesystem,
    _summarize_changes,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
    fake = _Clock()
    monkeypatch.setattr(watcher_module.time, "monotonic", fake)
    return fake


@pytest.fixture
def make_watcher(temp_dir: Path):
    def _make(*, max_size: int = 100, **kwargs) -> FileWatcher:
        return FileWatcher(
            root=temp_dir,
            checker=IgnoreChecker(temp_dir, respect_gitignore=False),
            queue=PathQueue(max_size=max_size),
            config=WatcherConfig(debounce_sec=0.5, max_debounce_wait_sec=2.0),
            **kwargs,
        )

    return _make


class TestCollectWatchDirs:
    """Initial watch set."""

    def test_root_and_nested_dirs(self, temp_dir: Path) -> None:
        """Every non-excluded directory is watched; pruned ones are not."""
        (temp_dir / "src" / "core").mkdir(parents=True)
        (temp_dir / "node_modules" / "pkg").mkdir(parents=True)
        (temp_dir / ".git").mkdir()
        dirs = _collect_watch_dirs(temp_dir, IgnoreChecker(temp_dir, respect_gitignore=False))
        assert set(dirs) == {temp_dir, temp_dir / "src", temp_dir / "src" / "core"}

    def test_cross_filesystem_detection(self) -> None:
        """WSL drive mounts are polled."""
        assert _is_cross_filesystem(Path("/mnt/c/Users/dev"))
        assert not _is_cross_filesystem(Path("/mnt/data"))

    def test_summarize_changes(self) -> None:
        assert _summarize_changes(["a.py", "b.py", "c.ts"]) == "2 .py files, 1 .ts file"


class TestHandleChanges:
    """Filtering raw notifications into the debounce window."""

    def test_file_change_recorded(self, make_watcher, temp_dir: Path) -> None:
        """A modified source file is held as CHANGED."""
        watcher = make_watcher()
        restart = watcher.handle_changes({(Change.modified, str(temp_dir / "src" / "a.py"))})
        assert not restart
        assert watcher.pending == {"src/a.py": PathEvent.CHANGED}

    def test_delete_recorded(self, make_watcher, temp_dir: Path) -> None:
        watcher = make_watcher()
        watcher.handle_changes({(Change.deleted, str(temp_dir / "gone.py"))})
        assert watcher.pending == {"gone.py": PathEvent.DELETED}

    def test_latest_event_wins(self, make_watcher, temp_dir: Path) -> None:
        """A burst on one path collapses to its final state."""
        watcher = make_watcher()
        path = str(temp_dir / "a.py")
        watcher.handle_changes({(Change.added, path)})
        watcher.handle_changes({(Change.modified, path)})
        watcher.handle_changes({(Change.deleted, path)})
        assert watcher.pending == {"a.py": PathEvent.DELETED}

    def test_excluded_and_outside_paths_ignored(self, make_watcher, temp_dir: Path) -> None:
        """Pruned directories and paths outside the root produce nothing."""
        watcher = make_watcher()
        watcher.handle_changes(
            {
                (Change.modified, str(temp_dir / "node_modules" / "x.js")),
                (Change.deleted, str(temp_dir / ".git" / "HEAD")),
                (Change.modified, "/somewhere/else.py"),
                (Change.modified, str(temp_dir)),
            }
        )
        assert watcher.pending == {}

    def test_gitignore_change_triggers_callback(self, make_watcher, temp_dir: Path) -> None:
        """.gitignore edits are routed to on_ignore_change instead of the queue."""
        calls: list[None] = []
        watcher = make_watcher(on_ignore_change=lambda: calls.append(None))
        (temp_dir / ".gitignore").write_text("*.log\n")
        watcher.handle_changes({(Change.modified, str(temp_dir / ".gitignore"))})
        assert calls == [None]
        assert watcher.pending == {}

    def test_new_directory_requests_restart(self, make_watcher, temp_dir: Path) -> None:
        """A new directory restarts the watch and records the files already in it."""
        watcher = make_watcher()
        (temp_dir / "moved" / "deep").mkdir(parents=True)
        (temp_dir / "moved" / "a.py").write_text("x = 1\n")
        (temp_dir / "moved" / "deep" / "b.ts").write_text("let y = 2;\n")
        restart = watcher.handle_changes({(Change.added, str(temp_dir / "moved"))})
        assert restart
        assert watcher.pending == {
            "moved/a.py": PathEvent.CHANGED,
            "moved/deep/b.ts": PathEvent.CHANGED,
        }


class TestDebounce:
    """Sliding window flushing."""

    def test_quiet_window_flushes(self, make_watcher, clock: _Clock) -> None:
        """The batch is flushed once no event arrived for debounce_sec."""
        watcher = make_watcher()
        assert not watcher.should_flush()
        watcher.record_change("a.py", PathEvent.CHANGED)
        clock.now += 0.3
        watcher.record_change("b.py", PathEvent.CHANGED)
        clock.now += 0.3
        assert not watcher.should_flush()
        clock.now += 0.3
        assert watcher.should_flush()

    def test_max_wait_caps_a_continuous_burst(self, make_watcher, clock: _Clock) -> None:
        """Events arriving faster than the window still flush after max_debounce_wait_sec."""
        watcher = make_watcher()
        for i in range(10):
            watcher.record_change(f"f{i}.py", PathEvent.CHANGED)
            clock.now += 0.25
        assert watcher.should_flush()

    def test_flush_publishes_to_queue(self, make_watcher) -> None:
        watcher = make_watcher()
        watcher.record_change("a.py", PathEvent.CHANGED)
        watcher.record_change("b.py", PathEvent.DELETED)
        assert watcher.flush() == 2
        assert watcher.pending == {}
        assert watcher.queue.get_nowait() == ("a.py", PathEvent.CHANGED)
        assert watcher.queue.get_nowait() == ("b.py", PathEvent.DELETED)
        assert watcher.flush() == 0

    def test_overflow_is_reported(self, make_watcher) -> None:
        """Paths that do not fit in the queue are reported as an overflow."""
        reports: list[WatcherOverflow] = []
        watcher = make_watcher(max_size=1, on_overflow=reports.append)
        for name in ("a.py", "b.py", "c.py"):
            watcher.record_change(name, PathEvent.CHANGED)
        assert watcher.flush() == 1
        assert len(reports) == 1
        assert reports[0].code == ErrorCode.WATCHER_OVERFLOW
        assert reports[0].details == {"dropped": 2}


class TestWatchLoop:
    """End-to-end with the polling backend."""

    @pytest.mark.asyncio
    async def test_detects_new_file(self, temp_dir: Path) -> None:
        """A file written after start reaches the queue."""
        queue = PathQueue()
        watcher = FileWatcher(
            root=temp_dir,
            checker=IgnoreChecker(temp_dir, respect_gitignore=False),
            queue=queue,
            config=WatcherConfig(
                debounce_sec=0.05,
                max_debounce_wait_sec=0.5,
                poll_interval_sec=0.05,
                force_polling=True,
            ),
        )
        await watcher.start()
        try:
            assert watcher.is_running
            await asyncio.sleep(0.3)
            (temp_dir / "new.py").write_text("def f():\n    pass\n")
            path, event = await asyncio.wait_for(queue.get(), timeout=5.0)
        finally:
            await watcher.stop()
        assert (path, event) == ("new.py", PathEvent.CHANGED)
        assert not watcher.is_running
