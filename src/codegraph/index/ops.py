"""High-level orchestration of the indexing pipeline.

This module implements the IndexCoordinator, the host-facing entry point
for all index operations. The pipeline per file is:

Traversal -> Fingerprint classify -> Language dispatch -> Parse/Extract -> Ingest

Serialization:
- _run_lock: only ONE full scan (index/refresh/rescan) at a time
- PathLocks: classify-and-ingest for a single path is serialized, so a
  watcher event never races a scan on the same file; the newer request
  waits and then supersedes

Hashing, parsing and SQLite transactions run on a bounded thread pool;
the asyncio side only schedules them.
"""

from __future__ import annotations

import asyncio
import functools
import os
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError

from codegraph.config import CodeGraphConfig, get_db_path, get_index_dir, load_config
from codegraph.core.errors import (
    CodeGraphError,
    IngestError,
    InternalError,
    NotFoundError,
    ParseError,
    RootError,
    WatcherOverflow,
)
from codegraph.core.events import EventEmitter, EventSink, RunSummary, Severity
from codegraph.core.logging import clear_run_id, set_run_id
from codegraph.index._internal.db import Database, create_graph_schema
from codegraph.index._internal.discovery import Traversal
from codegraph.index._internal.graph import GraphProjection, GraphStore, IngestSummary, SearchHit
from codegraph.index._internal.ignore import IgnoreChecker
from codegraph.index._internal.parsing import ParseResult, get_scheme_for_path, parse_file
from codegraph.index._internal.state import Classification, FingerprintStore
from codegraph.index._internal.watcher import FileWatcher, PathEvent, PathLocks, PathQueue
from codegraph.index.models import ChangeKind

logger = structlog.get_logger()

T = TypeVar("T")


class Outcome(Enum):
    """What happened to one path during a run."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    MISSING = "missing"  # Delete for a path that was never indexed
    PARSE_FAILED = "parse_failed"
    TIMEOUT = "timeout"
    INGEST_FAILED = "ingest_failed"
    FAILED = "failed"  # Unexpected error anywhere in the pipeline


def _tally(summary: RunSummary, outcome: Outcome) -> None:
    match outcome:
        case Outcome.ADDED:
            summary.files_added += 1
        case Outcome.MODIFIED:
            summary.files_modified += 1
        case Outcome.DELETED:
            summary.files_deleted += 1
        case Outcome.UNCHANGED:
            summary.files_unchanged += 1
        case Outcome.SKIPPED:
            summary.files_skipped += 1
        case Outcome.PARSE_FAILED:
            summary.parse_failures += 1
        case Outcome.TIMEOUT:
            summary.timeouts += 1
        case Outcome.INGEST_FAILED:
            summary.ingest_failures += 1
        case Outcome.FAILED:
            summary.internal_errors += 1
        case Outcome.MISSING:
            pass


class IndexCoordinator:
    """
    Host-facing facade over the indexing pipeline for one root.

    Usage::

        coordinator = IndexCoordinator(Path("/repo"), on_event=print)
        summary = await coordinator.index_directory()
        hits = coordinator.search("parse", entity_types=["Function"])

        await coordinator.start_watching()
        ...
        await coordinator.stop_watching()
        coordinator.close()
    """

    def __init__(
        self,
        root: Path,
        config: CodeGraphConfig | None = None,
        on_event: EventSink | None = None,
    ) -> None:
        self._explicit_config = config is not None
        self.config = config if config is not None else load_config(root)
        self._events = EventEmitter(on_event)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.indexer.max_workers,
            thread_name_prefix="codegraph-worker",
        )
        self._locks = PathLocks()
        self._run_lock = asyncio.Lock()
        self._run_task: asyncio.Task[Any] | None = None

        self._watcher: FileWatcher | None = None
        self._queue: PathQueue | None = None
        self._consumers: list[asyncio.Task[None]] = []
        self._rescan_task: asyncio.Task[None] | None = None

        self._set_root_paths(root)

    def _set_root_paths(self, root: Path) -> None:
        self.root = root.expanduser().resolve()
        self.db_path = get_db_path(self.root, self.config)
        self._db: Database | None = None
        self._fingerprints: FingerprintStore | None = None
        self._graph: GraphStore | None = None
        self._checker: IgnoreChecker | None = None

    # ------------------------------------------------------------------
    # Store lifecycle
    # ------------------------------------------------------------------

    def _check_root(self) -> None:
        if not self.root.exists():
            raise RootError.unavailable(str(self.root), "does not exist")
        if not self.root.is_dir():
            raise RootError.unavailable(str(self.root), "not a directory")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise RootError.unavailable(str(self.root), "permission denied")

    def _ensure_store(self) -> tuple[FingerprintStore, GraphStore]:
        """Open the database for the current root on first use.

        Raises:
            RootError: Root directory unusable.
            IngestError: Graph store cannot be opened.
        """
        self._check_root()
        if self._fingerprints is not None and self._graph is not None:
            return self._fingerprints, self._graph

        try:
            db = Database(self.db_path, self.config.database)
            db.create_all()
            create_graph_schema(db.engine)
        except (SQLAlchemyError, OSError) as e:
            raise IngestError.connection_failed(f"{self.db_path}: {e}") from e

        self._db = db
        self._fingerprints = FingerprintStore(
            db, max_file_bytes=self.config.index.max_file_size_mb * 1024 * 1024
        )
        self._graph = GraphStore(db, root_name=self.root.name)
        logger.debug("graph_store_opened", db_path=str(self.db_path))
        return self._fingerprints, self._graph

    def _close_store(self) -> None:
        if self._db is not None:
            self._db.dispose()
        self._db = None
        self._fingerprints = None
        self._graph = None

    def _build_checker(self) -> IgnoreChecker:
        index_cfg = self.config.index
        return IgnoreChecker(
            self.root,
            extra_patterns=index_cfg.extra_ignore_patterns,
            respect_gitignore=index_cfg.respect_gitignore,
            extra_prune_dirs=index_cfg.extra_prune_dirs,
            excluded_paths=[get_index_dir(self.root, self.config)],
        )

    async def _in_thread(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    # ------------------------------------------------------------------
    # Full scans
    # ------------------------------------------------------------------

    async def index_directory(self) -> RunSummary:
        """Index the root: every supported file is classified and ingested as needed.

        Raises:
            RootError: The root is unusable (after a single fatal event).
            IngestError: The graph store cannot be opened (after a single fatal event).
        """
        return await self._run("index")

    async def refresh_directory(self) -> RunSummary:
        """Incremental re-index. Unchanged files are short-circuited by fingerprint."""
        return await self._run("refresh")

    async def rescan(self) -> RunSummary:
        """Reconcile the fingerprint store against a fresh traversal (overflow recovery)."""
        return await self._run("rescan")

    async def _run(self, mode: str) -> RunSummary:
        async with self._run_lock:
            self._run_task = asyncio.current_task()
            run_id = set_run_id()
            log = logger.bind(run_id=run_id, mode=mode, root=str(self.root))
            self._events.reset()
            summary = RunSummary(root=str(self.root))
            start = time.monotonic()
            try:
                try:
                    fingerprints, _graph = self._ensure_store()
                    checker = self._build_checker()
                    traversal = Traversal(self.root, checker)
                    candidates = await self._in_thread(lambda: list(traversal))
                    seen = {c.rel_path for c in candidates if get_scheme_for_path(c.rel_path)}
                    deleted = await self._in_thread(fingerprints.deleted_since, seen)
                except CodeGraphError as e:
                    log.error("index_run_aborted", error=e.error_name, reason=e.message)
                    self._events.error(e, severity=Severity.FATAL)
                    raise
                self._checker = checker
                if self._watcher is not None:
                    self._watcher.checker = checker

                for err in traversal.stats.errors:
                    summary.traversal_errors += 1
                    self._events.error(err, severity=Severity.WARNING)

                unsupported = len(candidates) - len(seen)
                if unsupported:
                    log.debug("unsupported_files_skipped", count=unsupported, stage="dispatch")

                # Paths still on disk may have dropped out of traversal (newly ignored)
                paths = sorted(seen) + deleted
                summary.files_seen = len(seen)
                log.info("index_run_started", files=len(seen), deleted=len(deleted))
                self._events.progress(
                    f"Scanning {len(paths)} files", processed=0, total=len(paths)
                )
                await self._process_all(paths, summary, removed=set(deleted))

                summary.duration_sec = round(time.monotonic() - start, 3)
                if summary.files_changed and self._db is not None:
                    await self._in_thread(self._db.checkpoint)
                log.info("index_run_complete", **summary.to_dict())
                self._events.complete(summary)
                return summary
            finally:
                self._run_task = None
                clear_run_id()

    async def _process_all(
        self,
        paths: list[str],
        summary: RunSummary,
        *,
        removed: set[str] | frozenset[str] = frozenset(),
    ) -> None:
        """Run paths through a bounded pool of worker tasks.

        Paths in ``removed`` are dropped from the graph without being classified.
        """
        pending = deque(paths)
        total = len(paths)
        processed = 0

        async def worker() -> None:
            nonlocal processed
            while pending:
                rel_path = pending.popleft()
                outcome = await self._process_guarded(rel_path, force_delete=rel_path in removed)
                _tally(summary, outcome)
                processed += 1
                self._events.progress(
                    f"{outcome.value}: {rel_path}",
                    processed=processed,
                    total=total,
                    path=rel_path,
                )

        n_workers = min(self.config.indexer.max_workers, total)
        if n_workers:
            await asyncio.gather(*(worker() for _ in range(n_workers)))

    # ------------------------------------------------------------------
    # Per-path pipeline
    # ------------------------------------------------------------------

    def _require_store(self) -> tuple[FingerprintStore, GraphStore]:
        if self._fingerprints is not None and self._graph is not None:
            return self._fingerprints, self._graph
        return self._ensure_store()

    async def _process_guarded(self, rel_path: str, *, force_delete: bool = False) -> Outcome:
        """Process one path, reporting any failure as an error event instead of raising."""
        try:
            return await self._process_path(rel_path, force_delete=force_delete)
        except Exception as e:
            self._report_failure(rel_path, e)
            return Outcome.FAILED

    def _report_failure(self, rel_path: str, err: Exception) -> None:
        if isinstance(err, CodeGraphError):
            logger.error(
                "path_failed",
                path=rel_path,
                stage="process",
                error=err.error_name,
                reason=err.message,
            )
            self._events.error(err, severity=Severity.ERROR)
            return
        logger.error(
            "path_unexpected_error",
            path=rel_path,
            stage="process",
            error=str(err),
            error_type=type(err).__name__,
            exc_info=err,
        )
        wrapped = InternalError.unexpected(f"{type(err).__name__}: {err}", path=rel_path)
        self._events.error(wrapped, severity=Severity.ERROR)

    async def _process_path(self, rel_path: str, *, force_delete: bool = False) -> Outcome:
        """Classify a path and converge its graph data. Serialized per path.

        ``force_delete`` removes the path's graph data even if the file still exists.
        """
        fingerprints, graph = self._require_store()
        async with self._locks.hold(rel_path):
            if force_delete:
                return await self._remove(graph, rel_path)
            abs_path = self.root / rel_path
            try:
                classification = await self._in_thread(fingerprints.classify, rel_path, abs_path)
            except OSError as e:
                err = ParseError.unparseable(rel_path, f"unreadable: {e}")
                logger.warning("file_unreadable", path=rel_path, stage="classify", reason=str(e))
                self._events.error(err)
                return Outcome.PARSE_FAILED

            if classification.kind == ChangeKind.DELETED:
                return await self._remove(graph, rel_path)

            if classification.kind == ChangeKind.UNCHANGED:
                if classification.stat_changed:
                    await self._in_thread(fingerprints.touch, classification)
                return Outcome.UNCHANGED

            scheme = get_scheme_for_path(rel_path)
            if scheme is None:
                logger.debug("file_skipped", path=rel_path, stage="dispatch", reason="unsupported")
                return Outcome.SKIPPED

            if classification.too_large or classification.content is None:
                logger.info(
                    "file_skipped",
                    path=rel_path,
                    stage="classify",
                    reason="too_large",
                    size=classification.size,
                )
                return Outcome.SKIPPED

            result = await self._parse(rel_path, classification.content, scheme)
            if isinstance(result, Outcome):
                return result

            try:
                await self._ingest_with_retry(graph, result, classification)
            except IngestError as e:
                logger.error("ingest_failed", path=rel_path, stage="ingest", reason=e.message)
                self._events.error(e, severity=Severity.ERROR)
                return Outcome.INGEST_FAILED

            return Outcome.ADDED if classification.kind == ChangeKind.ADDED else Outcome.MODIFIED

    async def _parse(self, rel_path: str, content: bytes, scheme: Any) -> ParseResult | Outcome:
        budget = self.config.indexer.parse_timeout_sec
        try:
            return await asyncio.wait_for(
                self._in_thread(parse_file, rel_path, content, scheme), timeout=budget
            )
        except TimeoutError:
            err = ParseError.timeout(rel_path, budget)
            logger.warning("parse_timeout", path=rel_path, stage="parse", budget_sec=budget)
            self._events.error(err)
            return Outcome.TIMEOUT
        except ParseError as e:
            logger.warning("parse_failed", path=rel_path, stage="parse", reason=e.message)
            self._events.error(e)
            return Outcome.PARSE_FAILED

    async def _ingest_with_retry(
        self, graph: GraphStore, result: ParseResult, classification: Classification
    ) -> IngestSummary:
        cfg = self.config.indexer
        attempt = 0
        while True:
            try:
                return await self._in_thread(graph.ingest_file, result, classification)
            except IngestError as e:
                if attempt >= cfg.ingest_max_retries:
                    raise
                delay = cfg.ingest_retry_base_delay_sec * (2**attempt)
                attempt += 1
                logger.warning(
                    "ingest_retry",
                    path=result.path,
                    attempt=attempt,
                    max_retries=cfg.ingest_max_retries,
                    delay_sec=delay,
                    reason=e.message,
                )
                await asyncio.sleep(delay)

    async def _remove(self, graph: GraphStore, rel_path: str) -> Outcome:
        try:
            removed = await self._in_thread(graph.remove_file, rel_path)
        except IngestError as e:
            logger.error("remove_failed", path=rel_path, stage="ingest", reason=e.message)
            self._events.error(e, severity=Severity.ERROR)
            return Outcome.INGEST_FAILED
        if removed.nodes_deleted or removed.fingerprint_written:
            return Outcome.DELETED
        return Outcome.MISSING

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._watcher is not None

    async def start_watching(self) -> None:
        """Watch the root and feed changed paths through the pipeline.

        Raises:
            RootError: The root is unusable.
        """
        if self._watcher is not None:
            return
        self._ensure_store()
        if self._checker is None:
            self._checker = self._build_checker()

        self._queue = PathQueue(self.config.indexer.queue_max_size)
        self._watcher = FileWatcher(
            root=self.root,
            checker=self._checker,
            queue=self._queue,
            config=self.config.watcher,
            on_overflow=self._on_watch_overflow,
            on_ignore_change=self._on_ignore_change,
        )
        self._consumers = [
            asyncio.create_task(self._consume(self._queue))
            for _ in range(self.config.indexer.max_workers)
        ]
        await self._watcher.start()

    async def stop_watching(self) -> None:
        if self._watcher is None:
            return
        watcher, self._watcher = self._watcher, None
        await watcher.stop()

        tasks = [*self._consumers]
        if self._rescan_task is not None:
            tasks.append(self._rescan_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumers = []
        self._rescan_task = None

        if self._queue is not None and len(self._queue):
            logger.info("watch_queue_discarded", count=len(self._queue))
            self._queue.clear()
        self._queue = None

    async def _consume(self, queue: PathQueue) -> None:
        """Worker task: pull paths from the watch queue and process them."""
        while True:
            rel_path, event = await queue.get()
            try:
                if event == PathEvent.DELETED and self._fingerprints is not None:
                    nested = await self._in_thread(self._fingerprints.known_under, rel_path)
                    for path in sorted(nested):
                        queue.put(path, PathEvent.DELETED)
                    dropped = queue.take_dropped()
                    if dropped:
                        self._on_watch_overflow(WatcherOverflow.dropped(dropped))
                outcome = await self._process_guarded(rel_path)
                logger.debug("watch_path_processed", path=rel_path, outcome=outcome.value)
            except Exception as e:
                self._report_failure(rel_path, e)

    def _on_watch_overflow(self, err: WatcherOverflow) -> None:
        self._events.error(err, severity=Severity.WARNING)
        self._schedule_rescan("overflow")

    def _on_ignore_change(self) -> None:
        self._schedule_rescan("ignore_rules_changed")

    def _schedule_rescan(self, reason: str) -> None:
        if self._rescan_task is not None and not self._rescan_task.done():
            return
        logger.info("rescan_scheduled", reason=reason)
        self._rescan_task = asyncio.create_task(self._rescan_in_background())

    async def _rescan_in_background(self) -> None:
        try:
            await self.rescan()
        except CodeGraphError as e:
            logger.error("rescan_failed", error=e.error_name, reason=e.message)

    # ------------------------------------------------------------------
    # Root switching
    # ------------------------------------------------------------------

    async def set_root(self, new_root: Path) -> None:
        """Point the coordinator at a new root, cancelling work for the old one."""
        was_watching = self._watcher is not None
        await self.stop_watching()

        run_task = self._run_task
        if run_task is not None and run_task is not asyncio.current_task():
            run_task.cancel()
            await asyncio.gather(run_task, return_exceptions=True)

        old_root = self.root
        self._close_store()
        if not self._explicit_config:
            self.config = load_config(new_root)
        self._set_root_paths(new_root)
        logger.info("root_changed", old_root=str(old_root), new_root=str(self.root))

        if was_watching:
            await self.start_watching()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_file_content(self, path: str | Path) -> str:
        """Read a file under the root as text.

        Raises:
            NotFoundError: Missing, not a file, or outside the root.
        """
        candidate = Path(path)
        target = (candidate if candidate.is_absolute() else self.root / candidate).resolve()
        if not target.is_relative_to(self.root) or not target.is_file():
            raise NotFoundError.file(str(path))
        try:
            return target.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError as e:
            raise NotFoundError.file(str(path)) from e

    def get_graph(self) -> GraphProjection:
        _fingerprints, graph = self._ensure_store()
        return graph.get_graph()

    def search(
        self,
        term: str,
        entity_types: list[str] | None = None,
        limit: int | None = None,
    ) -> list[SearchHit]:
        limits = self.config.limits
        effective = limits.search_default if limit is None else min(limit, limits.search_max)
        _fingerprints, graph = self._ensure_store()
        return graph.search(term, entity_types, effective)

    def close(self) -> None:
        """Release the worker pool and database handles."""
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None
        for task in self._consumers:
            task.cancel()
        self._consumers = []
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._close_store()


__all__ = ["IndexCoordinator", "Outcome"]
