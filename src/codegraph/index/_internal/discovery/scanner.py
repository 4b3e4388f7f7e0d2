"""Candidate file traversal.

Walks the root top-down, pruning excluded directories before descending
into them, and yields root-relative candidate paths lazily. Extension
filtering is not done here: the language dispatcher decides which
candidates are parseable.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from codegraph.core.errors import TraversalError
from codegraph.index._internal.ignore import IgnoreChecker

logger = structlog.get_logger()

OnTraversalError = Callable[[TraversalError], None]


@dataclass
class Candidate:
    """A file that survived path-based exclusion."""

    rel_path: str  # POSIX, relative to root
    abs_path: Path


@dataclass
class TraversalStats:
    dirs_visited: int = 0
    dirs_pruned: int = 0
    files_yielded: int = 0
    files_excluded: int = 0
    errors: list[TraversalError] = field(default_factory=list)


class Traversal:
    """Lazy, restartable walk over a root.

    Each call to ``iter_candidates`` starts a fresh walk; the object holds
    no cursor state beyond the stats of the most recent walk.
    """

    def __init__(
        self,
        root: Path,
        checker: IgnoreChecker,
        *,
        on_error: OnTraversalError | None = None,
    ) -> None:
        self._root = root
        self._checker = checker
        self._on_error = on_error
        self.stats = TraversalStats()

    @property
    def root(self) -> Path:
        return self._root

    def __iter__(self) -> Iterator[Candidate]:
        return self.iter_candidates()

    def iter_candidates(self) -> Iterator[Candidate]:
        """Yield candidate files. Unreadable directories are reported and skipped."""
        stats = TraversalStats()
        self.stats = stats

        def _on_walk_error(err: OSError) -> None:
            path = str(err.filename) if err.filename else str(self._root)
            rel = self._relative(Path(path))
            reason = err.strerror or str(err)
            error = TraversalError.unreadable(rel, reason)
            stats.errors.append(error)
            logger.warning("directory_unreadable", path=rel, stage="traversal", reason=reason)
            if self._on_error is not None:
                self._on_error(error)

        for dirpath, dirnames, filenames in self._root.walk(on_error=_on_walk_error):
            stats.dirs_visited += 1
            rel_dir = self._relative(dirpath)

            kept: list[str] = []
            for d in sorted(dirnames):
                rel = f"{rel_dir}/{d}" if rel_dir else d
                if (dirpath / d).is_symlink() or self._checker.is_dir_excluded(rel):
                    stats.dirs_pruned += 1
                    logger.debug("directory_pruned", path=rel, stage="traversal")
                    continue
                kept.append(d)
            dirnames[:] = kept

            for name in sorted(filenames):
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if self._checker.is_file_excluded(rel):
                    stats.files_excluded += 1
                    continue
                stats.files_yielded += 1
                yield Candidate(rel_path=rel, abs_path=dirpath / name)

    def _relative(self, path: Path) -> str:
        if path == self._root:
            return ""
        try:
            return path.relative_to(self._root).as_posix()
        except ValueError:
            return path.as_posix()
