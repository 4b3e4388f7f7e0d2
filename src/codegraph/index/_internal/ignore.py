"""Shared ignore/exclude pattern matching with tiered architecture.

Single source of truth for path exclusion logic used by:
- Traversal (directory pruning and file filtering during scans)
- FileWatcher (runtime change filtering and watch-directory collection)

Tiered Architecture:
- HARDCODED_DIRS: Always excluded, cannot be overridden (VCS, .codegraph)
- DEFAULT_PRUNABLE_DIRS: Excluded by default, user can opt-in via !pattern
- .gitignore patterns (combined from every .gitignore under the root) and
  configured extra patterns, evaluated last-match-wins
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path

import structlog

from codegraph.core.excludes import (
    DEFAULT_PRUNABLE_DIRS,
    HARDCODED_DIRS,
    PRUNABLE_DIRS,
    is_hardcoded_dir,
)

logger = structlog.get_logger()

__all__ = [
    "PRUNABLE_DIRS",
    "HARDCODED_DIRS",
    "DEFAULT_PRUNABLE_DIRS",
    "IgnoreChecker",
    "IgnoreRule",
    "matches_glob",
]

GITIGNORE_NAME = ".gitignore"


@dataclass(frozen=True)
class IgnoreRule:
    """One parsed ignore pattern.

    ``prefix`` is the directory of the .gitignore that declared it (POSIX,
    relative to the root, "" for the root). Patterns without a slash match
    a path component at any depth below the prefix; patterns with a slash
    are anchored to the prefix.
    """

    pattern: str
    negated: bool = False
    dir_only: bool = False
    anchored: bool = False
    prefix: str = ""

    @classmethod
    def parse(cls, line: str, prefix: str = "") -> IgnoreRule | None:
        line = line.rstrip("\n").rstrip()
        if not line or line.startswith("#"):
            return None
        negated = line.startswith("!")
        if negated:
            line = line[1:]
        if line.startswith("\\"):
            line = line[1:]
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        if not line:
            return None
        anchored = "/" in line
        line = line.lstrip("/")
        if line.startswith("**/"):
            line = line[3:]
            anchored = "/" in line
        return cls(
            pattern=line,
            negated=negated,
            dir_only=dir_only,
            anchored=anchored,
            prefix=prefix,
        )

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        """Match a root-relative POSIX path (no leading slash)."""
        if self.dir_only and not is_dir:
            return False
        if self.prefix:
            if not rel_path.startswith(self.prefix + "/"):
                return False
            rel_path = rel_path[len(self.prefix) + 1 :]
        if self.anchored:
            return matches_glob(rel_path, self.pattern)
        return fnmatch.fnmatchcase(rel_path.rsplit("/", 1)[-1], self.pattern)


class IgnoreChecker:
    """Checks if paths should be ignored based on tiered patterns.

    Tiered Architecture:
    - Tier 0 (HARDCODED_DIRS): Always pruned, not overridable
    - Tier 1 (DEFAULT_PRUNABLE_DIRS + configured prune dirs): Pruned by
      default, user can opt-in via a root-level !pattern
    - Tier 2 (.gitignore + extra patterns): gitignore syntax with negation

    Directories are checked with ``should_prune_dir`` (name tiers) and
    ``should_ignore(..., is_dir=True)`` (patterns). A file is excluded when
    any ancestor directory is excluded.
    """

    def __init__(
        self,
        root: Path,
        extra_patterns: list[str] | None = None,
        *,
        respect_gitignore: bool = True,
        extra_prune_dirs: list[str] | None = None,
        excluded_paths: list[Path] | None = None,
    ) -> None:
        self._root = root
        self._prunable: frozenset[str] = DEFAULT_PRUNABLE_DIRS | frozenset(extra_prune_dirs or ())
        self._rules: list[IgnoreRule] = []
        self._negated_dirs: set[str] = set()
        self._gitignore_paths: list[Path] = []
        self._excluded_rel: list[str] = self._relative_exclusions(excluded_paths or [])
        if respect_gitignore:
            self._load_gitignore_recursive(root)
        for line in extra_patterns or []:
            self._add_line(line, prefix="")

    @property
    def root(self) -> Path:
        return self._root

    @property
    def negated_dirs(self) -> frozenset[str]:
        """Directory names re-included with a root-level ``!name`` pattern."""
        return frozenset(self._negated_dirs)

    @property
    def gitignore_paths(self) -> list[Path]:
        """All .gitignore files that were loaded."""
        return self._gitignore_paths.copy()

    def should_prune_dir(self, dirname: str) -> bool:
        """Check if a directory name is excluded by the name tiers.

        Args:
            dirname: Directory name (not path), e.g., "node_modules", "vendor"

        Example:
            checker.should_prune_dir(".git")          # True (hardcoded)
            checker.should_prune_dir("node_modules")  # True (default)
            # With "!dist/" in the root .gitignore:
            checker.should_prune_dir("dist")          # False (opted-in)
        """
        if is_hardcoded_dir(dirname):
            return True
        if dirname in self._prunable:
            return dirname not in self._negated_dirs
        return False

    def should_ignore(self, path: Path, *, is_dir: bool | None = None) -> bool:
        """Check an absolute path against every tier, including ancestors."""
        try:
            rel_path = path.relative_to(self._root)
        except ValueError:
            return True
        if is_dir is None:
            is_dir = path.is_dir()
        return self.is_excluded_rel(rel_path.as_posix(), is_dir=is_dir)

    def is_excluded_rel(self, rel_path: str, *, is_dir: bool = False) -> bool:
        """Check a root-relative path, including each ancestor directory."""
        rel_path = rel_path.replace("\\", "/").strip("/")
        if not rel_path or rel_path == ".":
            return False
        parts = rel_path.split("/")
        for i in range(1, len(parts) + 1):
            candidate = "/".join(parts[:i])
            candidate_is_dir = is_dir or i < len(parts)
            if candidate_is_dir and self.should_prune_dir(parts[i - 1]):
                return True
            if candidate_is_dir and self._is_excluded_path(candidate):
                return True
            if self._match_rules(candidate, candidate_is_dir):
                return True
        return False

    def is_dir_excluded(self, rel_dir: str) -> bool:
        """Check a single directory during a top-down walk.

        Ancestors are assumed to have been checked already.
        """
        name = rel_dir.rsplit("/", 1)[-1]
        if self.should_prune_dir(name):
            return True
        if self._is_excluded_path(rel_dir):
            return True
        return self._match_rules(rel_dir, True)

    def is_file_excluded(self, rel_file: str) -> bool:
        """Check a single file during a top-down walk (ancestors already checked)."""
        return self._match_rules(rel_file, False)

    def _match_rules(self, rel_path: str, is_dir: bool) -> bool:
        ignored = False
        for rule in self._rules:
            if rule.matches(rel_path, is_dir):
                ignored = not rule.negated
        return ignored

    def _is_excluded_path(self, rel_dir: str) -> bool:
        return any(rel_dir == ex for ex in self._excluded_rel)

    def _relative_exclusions(self, paths: list[Path]) -> list[str]:
        excluded: list[str] = []
        for p in paths:
            try:
                excluded.append(p.resolve().relative_to(self._root.resolve()).as_posix())
            except (ValueError, OSError):
                continue
        return [e for e in excluded if e and e != "."]

    def _load_gitignore_recursive(self, root: Path) -> None:
        """Load .gitignore from root and all subdirectories.

        Nested files apply to their own directory, like git does.
        """

        def _on_error(err: OSError) -> None:
            logger.warning("gitignore_scan_unreadable", path=str(err.filename), reason=str(err))

        for dirpath, dirnames, filenames in root.walk(on_error=_on_error):
            rel_dir = "" if dirpath == root else dirpath.relative_to(root).as_posix()
            if GITIGNORE_NAME in filenames:
                self._load_ignore_file(dirpath / GITIGNORE_NAME, prefix=rel_dir)
            dirnames[:] = [
                d
                for d in dirnames
                if not self.is_dir_excluded(f"{rel_dir}/{d}" if rel_dir else d)
            ]

    def _load_ignore_file(self, path: Path, prefix: str = "") -> None:
        """Load patterns from an ignore file.

        Also tracks root-level negated directory names (e.g., !dist/) to
        allow opting-in to directories that are pruned by default.
        """
        try:
            content = path.read_text(errors="replace")
        except OSError as e:
            logger.warning("ignore_file_unreadable", path=str(path), reason=str(e))
            return
        self._gitignore_paths.append(path)
        for line in content.splitlines():
            self._add_line(line, prefix=prefix)

    def _add_line(self, line: str, prefix: str) -> None:
        rule = IgnoreRule.parse(line, prefix=prefix)
        if rule is None:
            return
        if rule.negated and not prefix and "/" not in rule.pattern and "*" not in rule.pattern:
            self._negated_dirs.add(rule.pattern)
        self._rules.append(rule)


def matches_glob(rel_path: str, pattern: str) -> bool:
    """Check if a path matches a glob pattern, with ** support."""
    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    # Handle **/pattern for any-depth matching
    if pattern.startswith("**/"):
        return fnmatch.fnmatchcase(rel_path, pattern[3:])
    # dir/** also matches dir itself
    if pattern.endswith("/**"):
        return rel_path == pattern[:-3]
    return False
