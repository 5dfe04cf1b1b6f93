"""Tests for the worker pool retry policy."""

import asyncio

from tradeguard.errors import BrokerNetworkError, InvalidStateError
from tradeguard.queue.jobs import MemoryJobQueue
from tradeguard.queue.worker import WorkerPool


class _Recorder:
    def __init__(self, failures=()):
        self.failures = list(failures)
        self.attempts = []
        self.exhausted = []

    async def handle(self, job):
        self.attempts.append(job.attempt)
        if self.failures:
            raise self.failures.pop(0)

    async def on_exhausted(self, job, error):
        self.exhausted.append((job.id, error))


def _pool(queue, recorder, max_attempts=3):
    pool = WorkerPool(queue, max_attempts=max_attempts, backoff_seconds=0.0)
    pool.register("execution", "execute_order", recorder.handle, on_exhausted=recorder.on_exhausted)
    return pool


async def _settle(pool):
    for _ in range(10):
        await pool.tasks.join()
        if not await pool.drain():
            return


class TestWorkerPool:
    async def test_success(self):
        q, rec = MemoryJobQueue(), _Recorder()
        pool = _pool(q, rec)
        await q.enqueue("execution", "execute_order", {})
        await _settle(pool)
        assert rec.attempts == [0]
        assert pool.processed == 1

    async def test_retryable_then_success(self):
        q = MemoryJobQueue()
        rec = _Recorder([BrokerNetworkError("timeout")])
        pool = _pool(q, rec)
        await q.enqueue("execution", "execute_order", {})
        await _settle(pool)
        assert rec.attempts == [0, 1]
        assert rec.exhausted == []

    async def test_exhausted_hook_after_max_attempts(self):
        q = MemoryJobQueue()
        rec = _Recorder([BrokerNetworkError("down")] * 3)
        pool = _pool(q, rec)
        await q.enqueue("execution", "execute_order", {})
        await _settle(pool)
        assert rec.attempts == [0, 1, 2]
        assert len(rec.exhausted) == 1

    async def test_non_retryable_dropped(self):
        q = MemoryJobQueue()
        rec = _Recorder([InvalidStateError("not approved")])
        pool = _pool(q, rec)
        await q.enqueue("execution", "execute_order", {})
        await _settle(pool)
        assert rec.attempts == [0]
        assert rec.exhausted == []

    async def test_unclassified_error_reaches_hook(self):
        q = MemoryJobQueue()
        rec = _Recorder([RuntimeError("bug")])
        pool = _pool(q, rec)
        await q.enqueue("execution", "execute_order", {})
        await _settle(pool)
        assert rec.attempts == [0]
        assert len(rec.exhausted) == 1

    async def test_unknown_job_dropped(self):
        q = MemoryJobQueue()
        pool = _pool(q, _Recorder())
        await q.enqueue("execution", "something_else", {})
        assert await pool.drain() == 1
        assert pool.processed == 0

    async def test_started_workers_consume(self):
        q, rec = MemoryJobQueue(), _Recorder()
        pool = WorkerPool(q, poll_timeout=0.01)
        pool.register("execution", "execute_order", rec.handle, concurrency=2)
        pool.start()
        await q.enqueue("execution", "execute_order", {})
        for _ in range(100):
            if rec.attempts:
                break
            await asyncio.sleep(0.01)
        await pool.stop()
        assert rec.attempts == [0]
