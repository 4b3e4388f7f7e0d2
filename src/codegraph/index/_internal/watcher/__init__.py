"""Filesystem watching and the path work queue."""

from codegraph.index._internal.watcher.queue import PathEvent, PathLocks, PathQueue
from codegraph.index._internal.watcher.watcher import FileWatcher

__all__ = [
    "FileWatcher",
    "PathEvent",
    "PathLocks",
    "PathQueue",
]
