"""Stable graph identities.

Ids are derived only from the owning path and the entity's position and
name, so parsing byte-identical content always reproduces the same ids.
"""

from __future__ import annotations

import hashlib

from codegraph.index.models import NodeLabel


def file_id(path: str) -> str:
    return f"file:{path}"


def directory_id(path: str) -> str:
    """Id of a directory node. The root directory has path ""."""
    return f"directory:{path}"


def entity_id(
    file_path: str,
    label: NodeLabel,
    qualifier: str,
    start_line: int,
    start_col: int,
) -> str:
    """Compute a stable entity id: ``<label>:<sha256[:16]>``."""
    raw = f"{file_path}\x00{label.value}\x00{qualifier}\x00{start_line}\x00{start_col}"
    digest = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return f"{label.value.lower()}:{digest}"


def parent_dir(path: str) -> str:
    """Parent directory of a root-relative POSIX path ("" for top level)."""
    head, sep, _tail = path.rpartition("/")
    return head if sep else ""


def ancestor_dirs(path: str) -> list[str]:
    """Ancestor directories of a file path, nearest first, ending with the root ("")."""
    dirs: list[str] = []
    current = parent_dir(path)
    while current:
        dirs.append(current)
        current = parent_dir(current)
    dirs.append("")
    return dirs
