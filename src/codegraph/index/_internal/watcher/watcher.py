"""File watcher using watchfiles for async filesystem monitoring.

Design:
- Python walks the root respecting IgnoreChecker pruning tiers
- Builds an explicit list of directories to watch
- Passes them to awatch with recursive=False (one inotify watch per dir)
- Restarts awatch when a new directory appears
- Uses watchfiles' polling mode for cross-filesystem mounts or on request

Changes are held in a sliding debounce window: repeated events for one
path inside the window collapse into one entry, and the whole batch is
flushed once the window has been quiet for ``debounce_sec`` or the oldest
entry has waited ``max_debounce_wait_sec``. Flushed paths go to the
PathQueue consumed by the indexing workers.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from watchfiles import Change, awatch

from codegraph.config.models import WatcherConfig
from codegraph.core.errors import WatcherOverflow
from codegraph.index._internal.ignore import GITIGNORE_NAME, IgnoreChecker
from codegraph.index._internal.watcher.queue import PathEvent, PathQueue

logger = structlog.get_logger()

OnOverflow = Callable[[WatcherOverflow], None]


def _collect_watch_dirs(root: Path, checker: IgnoreChecker) -> list[Path]:
    """Walk the root and collect every non-excluded directory.

    The root itself is always included. Each directory gets a single
    non-recursive watch.
    """
    dirs: list[Path] = [root]

    def _on_error(err: OSError) -> None:
        logger.warning("watch_dir_unreadable", path=str(err.filename), reason=str(err))

    for dirpath, dirnames, _filenames in root.walk(on_error=_on_error):
        rel_dir = "" if dirpath == root else dirpath.relative_to(root).as_posix()
        dirnames[:] = [
            d
            for d in sorted(dirnames)
            if not (dirpath / d).is_symlink()
            and not checker.is_dir_excluded(f"{rel_dir}/{d}" if rel_dir else d)
        ]
        dirs.extend(dirpath / d for d in dirnames)
    return dirs


def _is_cross_filesystem(path: Path) -> bool:
    """Detect cross-filesystem mounts (WSL /mnt/c, network drives) where inotify fails."""
    path_str = str(path.resolve())
    if (
        path_str.startswith("/mnt/")
        and len(path_str) > 6
        and path_str[5].isalpha()
        and path_str[6] == "/"
    ):
        return True
    return path_str.startswith(("/run/user/", "/media/", "/net/"))


def _summarize_changes(paths: list[str]) -> str:
    """Summarize a batch like ``"2 .py files, 1 .ts file"``."""
    counts: Counter[str] = Counter(Path(p).suffix.lower() or "other" for p in paths)
    parts = []
    for ext, count in counts.most_common(3):
        parts.append(f"{count} {ext} {'file' if count == 1 else 'files'}")
    remaining = len(paths) - sum(c for _, c in counts.most_common(3))
    if remaining > 0:
        parts.append(f"{remaining} {'other' if remaining == 1 else 'others'}")
    return ", ".join(parts)


@dataclass
class FileWatcher:
    """Async file watcher with sliding-window debouncing.

    ``on_overflow`` is called when notifications were lost (queue full or
    the watch backend failed). ``on_ignore_change`` is called when a
    ``.gitignore`` changes, since exclusion rules must be rebuilt.
    """

    root: Path
    checker: IgnoreChecker
    queue: PathQueue
    config: WatcherConfig = field(default_factory=WatcherConfig)
    on_overflow: OnOverflow | None = None
    on_ignore_change: Callable[[], None] | None = None

    _watch_task: asyncio.Task[None] | None = field(default=None, init=False)
    _debounce_task: asyncio.Task[None] | None = field(default=None, init=False)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _polling: bool = field(init=False)
    # Debouncing state
    _pending: dict[str, PathEvent] = field(default_factory=dict, init=False)
    _last_change_time: float = field(default=0.0, init=False)
    _first_change_time: float = field(default=0.0, init=False)
    _watched_dirs: set[Path] = field(default_factory=set, init=False)

    def __post_init__(self) -> None:
        self._polling = self.config.force_polling or _is_cross_filesystem(self.root)

    @property
    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    @property
    def pending(self) -> dict[str, PathEvent]:
        return dict(self._pending)

    async def start(self) -> None:
        """Start watching for file changes."""
        if self._watch_task is not None:
            return
        self._stop_event.clear()
        self._debounce_task = asyncio.create_task(self._debounce_flush_loop())
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(
            "file_watcher_started",
            root=str(self.root),
            mode="polling" if self._polling else "native_nonrecursive",
            debounce_sec=self.config.debounce_sec,
        )

    async def stop(self) -> None:
        """Stop watching. Pending changes are flushed to the queue first."""
        self._stop_event.set()

        if self._debounce_task is not None:
            self._debounce_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._debounce_task
            self._debounce_task = None

        if self._pending:
            self.flush()

        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._watch_task, timeout=2.0)
            self._watch_task = None

        logger.info("file_watcher_stopped", root=str(self.root))

    def cancel(self) -> None:
        """Stop without awaiting or flushing (synchronous shutdown)."""
        self._stop_event.set()
        for task in (self._debounce_task, self._watch_task):
            if task is not None:
                task.cancel()
        self._debounce_task = None
        self._watch_task = None
        self._pending.clear()

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def record_change(self, rel_path: str, event: PathEvent) -> None:
        """Hold a change in the debounce window (latest event wins)."""
        now = time.monotonic()
        if not self._pending:
            self._first_change_time = now
        self._pending[rel_path] = event
        self._last_change_time = now

    def should_flush(self) -> bool:
        if not self._pending:
            return False
        now = time.monotonic()
        return (
            now - self._last_change_time >= self.config.debounce_sec
            or now - self._first_change_time >= self.config.max_debounce_wait_sec
        )

    def flush(self) -> int:
        """Publish held changes to the queue. Returns the number published."""
        if not self._pending:
            return 0
        batch = self._pending
        self._pending = {}
        self._first_change_time = 0.0
        self._last_change_time = 0.0

        logger.info(
            "changes_detected", count=len(batch), summary=_summarize_changes(list(batch))
        )
        published = 0
        for rel_path, event in batch.items():
            if self.queue.put(rel_path, event):
                published += 1
        dropped = self.queue.take_dropped()
        if dropped:
            self._report_overflow(WatcherOverflow.dropped(dropped))
        return published

    async def _debounce_flush_loop(self) -> None:
        interval = min(0.1, max(self.config.debounce_sec / 3, 0.01))
        while not self._stop_event.is_set():
            await asyncio.sleep(interval)
            if self.should_flush():
                self.flush()

    def _report_overflow(self, err: WatcherOverflow) -> None:
        logger.warning("watcher_overflow", reason=err.message, **err.details)
        if self.on_overflow is not None:
            self.on_overflow(err)

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def _watch_loop(self) -> None:
        """Run awatch over the collected directories, restarting on new dirs."""
        while not self._stop_event.is_set():
            watch_dirs = await asyncio.to_thread(_collect_watch_dirs, self.root, self.checker)
            self._watched_dirs = set(watch_dirs)
            logger.debug("watch_dirs_collected", count=len(watch_dirs), root=str(self.root))

            try:
                async for changes in awatch(
                    *watch_dirs,
                    recursive=False,
                    stop_event=self._stop_event,
                    ignore_permission_denied=True,
                    force_polling=self._polling,
                    poll_delay_ms=int(self.config.poll_interval_sec * 1000),
                ):
                    if self.handle_changes(changes):
                        logger.info("watcher_restart_requested", reason="new_directories")
                        break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stop_event.is_set():
                    return
                logger.error("watcher_error", error=str(e), exc_info=True)
                self._report_overflow(WatcherOverflow.backend_failed(str(e)))
                await asyncio.sleep(1.0)

    def handle_changes(self, changes: set[tuple[Change, str]]) -> bool:
        """Filter a raw watchfiles batch into the debounce window.

        Returns True when a new directory was seen and the watch set must
        be rebuilt.
        """
        needs_restart = False
        for change_type, path_str in changes:
            path = Path(path_str)
            try:
                rel_path = path.relative_to(self.root).as_posix()
            except ValueError:
                continue
            if not rel_path or rel_path == ".":
                continue

            if change_type == Change.deleted:
                if self.checker.is_excluded_rel(rel_path):
                    continue
                self.record_change(rel_path, PathEvent.DELETED)
                continue

            if path.is_dir():
                if (
                    change_type == Change.added
                    and path not in self._watched_dirs
                    and not self.checker.is_excluded_rel(rel_path, is_dir=True)
                ):
                    logger.info("new_directory_detected", path=rel_path)
                    self._record_tree(path)
                    needs_restart = True
                continue

            if path.name == GITIGNORE_NAME:
                logger.info("gitignore_changed", path=rel_path)
                if self.on_ignore_change is not None:
                    self.on_ignore_change()
                continue

            if self.checker.is_excluded_rel(rel_path):
                logger.debug("path_ignored", path=rel_path, stage="watch")
                continue

            self.record_change(rel_path, PathEvent.CHANGED)
            logger.debug("path_queued", path=rel_path, change_type=change_type.name)
        return needs_restart

    def _record_tree(self, directory: Path) -> None:
        """Record every file under a newly created directory (e.g. a moved-in tree)."""
        for dirpath, dirnames, filenames in directory.walk():
            rel_dir = dirpath.relative_to(self.root).as_posix()
            dirnames[:] = [d for d in dirnames if not self.checker.is_dir_excluded(f"{rel_dir}/{d}")]
            for name in filenames:
                rel = f"{rel_dir}/{name}"
                if not self.checker.is_file_excluded(rel):
                    self.record_change(rel, PathEvent.CHANGED)
