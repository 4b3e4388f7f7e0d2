"""Work queue and per-path locks for the watch pipeline."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum


class PathEvent(Enum):
    """What a watcher saw happen to a path."""

    CHANGED = "changed"
    DELETED = "deleted"


class PathQueue:
    """Bounded FIFO of distinct root-relative paths.

    A path already waiting keeps its position and takes the newer event
    kind ("latest state wins"). A new path arriving when the queue is full
    is dropped and the queue is marked overflowed; the owner is expected
    to rescan.
    """

    def __init__(self, max_size: int = 10000) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self._max_size = max_size
        self._pending: OrderedDict[str, PathEvent] = OrderedDict()
        self._ready = asyncio.Event()
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, path: object) -> bool:
        return path in self._pending

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def overflowed(self) -> bool:
        return self._dropped > 0

    def put(self, path: str, event: PathEvent = PathEvent.CHANGED) -> bool:
        """Enqueue or update a path. Returns False if it was dropped."""
        if path in self._pending:
            self._pending[path] = event
            return True
        if len(self._pending) >= self._max_size:
            self._dropped += 1
            return False
        self._pending[path] = event
        self._ready.set()
        return True

    def get_nowait(self) -> tuple[str, PathEvent] | None:
        if not self._pending:
            self._ready.clear()
            return None
        item = self._pending.popitem(last=False)
        if not self._pending:
            self._ready.clear()
        return item

    async def get(self) -> tuple[str, PathEvent]:
        """Wait for and remove the oldest pending path."""
        while True:
            item = self.get_nowait()
            if item is not None:
                return item
            await self._ready.wait()

    def take_dropped(self) -> int:
        """Return and reset the number of dropped paths."""
        dropped, self._dropped = self._dropped, 0
        return dropped

    def clear(self) -> None:
        self._pending.clear()
        self._ready.clear()


class PathLocks:
    """Per-path asyncio locks, created on demand and released when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        self._holders[path] = self._holders.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[path] -= 1
            if not self._holders[path]:
                del self._holders[path]
                del self._locks[path]

    def locked(self, path: str) -> bool:
        lock = self._locks.get(path)
        return lock is not None and lock.locked()
