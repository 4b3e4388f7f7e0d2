"""Tests for the deduplicating path queue and per-path locks."""

from __future__ import annotations

import asyncio

import pytest

from codegraph.index._internal.watcher import PathEvent, PathLocks, PathQueue


class TestPathQueue:
    """PathQueue behavior."""

    def test_fifo_order(self) -> None:
        """Distinct paths come out in arrival order."""
        queue = PathQueue()
        for path in ("a.py", "b.py", "c.py"):
            queue.put(path)
        assert [queue.get_nowait() for _ in range(3)] == [
            ("a.py", PathEvent.CHANGED),
            ("b.py", PathEvent.CHANGED),
            ("c.py", PathEvent.CHANGED),
        ]
        assert queue.get_nowait() is None

    def test_duplicate_keeps_position_and_latest_event(self) -> None:
        """A waiting path is not duplicated; the newer event replaces the old one."""
        queue = PathQueue()
        queue.put("a.py")
        queue.put("b.py")
        queue.put("a.py", PathEvent.DELETED)
        assert len(queue) == 2
        assert "a.py" in queue
        assert queue.get_nowait() == ("a.py", PathEvent.DELETED)
        assert queue.get_nowait() == ("b.py", PathEvent.CHANGED)

    def test_overflow_drops_new_paths(self) -> None:
        """New paths beyond max_size are counted as dropped."""
        queue = PathQueue(max_size=2)
        assert queue.put("a.py")
        assert queue.put("b.py")
        assert not queue.put("c.py")
        assert queue.put("a.py", PathEvent.DELETED)
        assert queue.overflowed
        assert queue.take_dropped() == 1
        assert not queue.overflowed
        assert queue.take_dropped() == 0

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            PathQueue(max_size=0)

    def test_clear(self) -> None:
        queue = PathQueue()
        queue.put("a.py")
        queue.clear()
        assert len(queue) == 0
        assert queue.get_nowait() is None

    @pytest.mark.asyncio
    async def test_get_waits_for_put(self) -> None:
        """get() blocks until a path arrives."""
        queue = PathQueue()
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0.01)
        assert not waiter.done()
        queue.put("late.py")
        assert await asyncio.wait_for(waiter, timeout=1.0) == ("late.py", PathEvent.CHANGED)


class TestPathLocks:
    """PathLocks behavior."""

    @pytest.mark.asyncio
    async def test_same_path_is_serialized(self) -> None:
        """Two holders of one path never overlap."""
        locks = PathLocks()
        active = 0
        peak = 0

        async def _work() -> None:
            nonlocal active, peak
            async with locks.hold("a.py"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(_work() for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_paths_run_concurrently(self) -> None:
        """Distinct paths do not block each other."""
        locks = PathLocks()
        entered = asyncio.Event()

        async def _first() -> None:
            async with locks.hold("a.py"):
                await asyncio.wait_for(entered.wait(), timeout=1.0)

        async def _second() -> None:
            async with locks.hold("b.py"):
                assert locks.locked("a.py")
                entered.set()

        await asyncio.gather(_first(), _second())

    @pytest.mark.asyncio
    async def test_idle_locks_are_released(self) -> None:
        """Locks are discarded once no one holds or waits for them."""
        locks = PathLocks()
        async with locks.hold("a.py"):
            assert len(locks) == 1
            assert locks.locked("a.py")
        assert len(locks) == 0
        assert not locks.locked("a.py")
