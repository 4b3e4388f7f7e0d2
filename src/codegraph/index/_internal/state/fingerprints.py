"""Content fingerprints for change detection.

The content hash is authoritative. Size and mtime are only a pre-filter:
when both match the stored row the file is not re-read. Any other case
re-hashes, so clock skew can make us do extra work but can never make a
changed file look unchanged.
"""

from __future__ import annotations

import hashlib
import stat
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from sqlmodel import col, select

from codegraph.index.models import ChangeKind, FileFingerprint

if TYPE_CHECKING:
    from codegraph.index._internal.db import BulkWriter, Database

logger = structlog.get_logger()


def compute_hash(content: bytes) -> str:
    """SHA-256 of file bytes."""
    return hashlib.sha256(content).hexdigest()


@dataclass
class Classification:
    """Result of classifying one path against its stored fingerprint.

    ``content`` is populated whenever the file had to be read, so callers
    can parse without a second read.
    """

    rel_path: str
    kind: ChangeKind
    content_hash: str | None = None
    size: int = 0
    mtime_ns: int = 0
    content: bytes | None = None
    too_large: bool = False
    stat_changed: bool = False  # Unchanged by hash, but stat differs from the stored row

    @property
    def needs_ingest(self) -> bool:
        return self.kind in (ChangeKind.ADDED, ChangeKind.MODIFIED)


class FingerprintStore:
    """Persisted path -> (hash, size, mtime) table.

    Reads open short sessions; writes go through a BulkWriter bound to the
    caller's transaction so the fingerprint commits with the file's graph
    rows.
    """

    def __init__(self, db: Database, *, max_file_bytes: int | None = None) -> None:
        self._db = db
        self._max_file_bytes = max_file_bytes

    def get(self, rel_path: str) -> FileFingerprint | None:
        with self._db.session() as session:
            return session.get(FileFingerprint, rel_path)

    def known_paths(self) -> set[str]:
        with self._db.session() as session:
            return set(session.exec(select(FileFingerprint.path)).all())

    def known_under(self, rel_dir: str) -> set[str]:
        """Known paths below a directory (for directory delete events)."""
        if not rel_dir:
            return self.known_paths()
        prefix = rel_dir.rstrip("/") + "/"
        with self._db.session() as session:
            stmt = select(FileFingerprint.path).where(col(FileFingerprint.path).startswith(prefix))
            return set(session.exec(stmt).all())

    def classify(self, rel_path: str, abs_path: Path) -> Classification:
        """Classify a path as unchanged, added, modified or deleted."""
        previous = self.get(rel_path)

        try:
            st = abs_path.stat()
        except FileNotFoundError:
            st = None
        if st is None or not stat.S_ISREG(st.st_mode):
            return Classification(rel_path=rel_path, kind=ChangeKind.DELETED)

        if previous is not None and previous.size == st.st_size and previous.mtime_ns == st.st_mtime_ns:
            return Classification(
                rel_path=rel_path,
                kind=ChangeKind.UNCHANGED,
                content_hash=previous.content_hash,
                size=st.st_size,
                mtime_ns=st.st_mtime_ns,
            )

        new_kind = ChangeKind.ADDED if previous is None else ChangeKind.MODIFIED
        if self._max_file_bytes is not None and st.st_size > self._max_file_bytes:
            return Classification(
                rel_path=rel_path,
                kind=new_kind,
                size=st.st_size,
                mtime_ns=st.st_mtime_ns,
                too_large=True,
            )

        content = abs_path.read_bytes()
        content_hash = compute_hash(content)
        if previous is not None and previous.content_hash == content_hash:
            return Classification(
                rel_path=rel_path,
                kind=ChangeKind.UNCHANGED,
                content_hash=content_hash,
                size=len(content),
                mtime_ns=st.st_mtime_ns,
                stat_changed=True,
            )

        return Classification(
            rel_path=rel_path,
            kind=new_kind,
            content_hash=content_hash,
            size=len(content),
            mtime_ns=st.st_mtime_ns,
            content=content,
        )

    def deleted_since(self, seen: set[str]) -> list[str]:
        """Known paths missing from a full traversal."""
        return sorted(self.known_paths() - seen)

    def touch(self, classification: Classification) -> None:
        """Refresh the stat pre-filter for a file whose bytes did not change."""
        with self._db.immediate_transaction() as session:
            row = session.get(FileFingerprint, classification.rel_path)
            if row is None:
                return
            row.size = classification.size
            row.mtime_ns = classification.mtime_ns
            session.add(row)

    @staticmethod
    def record(
        writer: BulkWriter,
        rel_path: str,
        *,
        content_hash: str,
        size: int,
        mtime_ns: int,
        language: str | None,
    ) -> None:
        """Upsert a fingerprint inside the caller's transaction."""
        writer.upsert_many(
            FileFingerprint,
            [
                {
                    "path": rel_path,
                    "content_hash": content_hash,
                    "size": size,
                    "mtime_ns": mtime_ns,
                    "language": language,
                    "indexed_at": time.time(),
                }
            ],
            conflict_columns=["path"],
            update_columns=["content_hash", "size", "mtime_ns", "language", "indexed_at"],
        )

    @staticmethod
    def forget(writer: BulkWriter, rel_path: str) -> int:
        return writer.delete_where(FileFingerprint, "path = :path", {"path": rel_path})
