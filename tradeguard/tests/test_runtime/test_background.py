"""Tests for supervised background tasks."""

import asyncio
import logging

from tradeguard.runtime.background import BackgroundTasks


class TestBackgroundTasks:
    async def test_join_waits_for_all(self):
        tasks = BackgroundTasks()
        done = []

        async def work(n):
            await asyncio.sleep(0)
            done.append(n)

        for n in range(3):
            tasks.spawn(work(n))
        await tasks.join()
        assert sorted(done) == [0, 1, 2]
        assert len(tasks) == 0

    async def test_failure_logged_not_raised(self, caplog):
        tasks = BackgroundTasks()

        async def boom():
            raise RuntimeError("kaboom")

        with caplog.at_level(logging.ERROR):
            tasks.spawn(boom(), name="boom-task")
            await tasks.join()
        assert "boom-task" in caplog.text
        assert "kaboom" in caplog.text

    async def test_keyed_spawn_replaces(self):
        tasks = BackgroundTasks()
        gate = asyncio.Event()

        async def wait():
            await gate.wait()

        first = tasks.spawn(wait(), key="order-1")
        second = tasks.spawn(wait(), key="order-1")
        await asyncio.gather(first, return_exceptions=True)
        assert first.cancelled()
        assert tasks.get("order-1") is second
        gate.set()
        await tasks.join()
        assert tasks.get("order-1") is None

    async def test_cancel_unknown_key(self):
        assert BackgroundTasks().cancel("nope") is False

    async def test_shutdown_cancels(self):
        tasks = BackgroundTasks()
        task = tasks.spawn(asyncio.sleep(3600), key="long")
        await tasks.shutdown()
        assert task.cancelled()
        assert len(tasks) == 0
