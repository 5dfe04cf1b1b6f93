"""Job envelope and the two queue backends (in-process and Redis)."""

import asyncio
import itertools
import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from enum import StrEnum
from typing import Any

import redis.asyncio as redis

from tradeguard.models.common import new_id, utc_now_iso

logger = logging.getLogger(__name__)


class QueueName(StrEnum):
    SIGNAL = "signal"
    RISK = "risk"
    EXECUTION = "execution"
    AUDIT = "audit"


class JobName(StrEnum):
    RISK_CHECK = "risk_check"
    EXECUTE_ORDER = "execute_order"
    AUDIT = "audit"


# Lower runs sooner.
PRIORITY_RISK_CHECK = 1
PRIORITY_EXECUTE_ORDER = 2
PRIORITY_AUDIT = 5


@dataclass(frozen=True)
class Job:
    queue: str
    name: str
    payload: dict[str, Any]
    priority: int = 5
    attempt: int = 0
    id: str = field(default_factory=new_id)
    enqueued_at: str = field(default_factory=utc_now_iso)

    def next_attempt(self) -> "Job":
        return replace(self, attempt=self.attempt + 1, enqueued_at=utc_now_iso())

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, default=str)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Job":
        return cls(**json.loads(raw))


class MemoryJobQueue:
    """asyncio priority queues, FIFO within a priority."""

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.PriorityQueue] = {}
        self._seq = itertools.count()

    def _queue(self, name: str) -> asyncio.PriorityQueue:
        if name not in self._queues:
            self._queues[name] = asyncio.PriorityQueue()
        return self._queues[name]

    async def enqueue(
        self, queue: str, name: str, payload: dict[str, Any], priority: int = 5
    ) -> Job:
        job = Job(queue=str(queue), name=str(name), payload=payload, priority=priority)
        await self.put(job)
        return job

    async def put(self, job: Job) -> None:
        await self._queue(job.queue).put((job.priority, next(self._seq), job))

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Job | None:
        q = self._queue(str(queue))
        try:
            if timeout <= 0:
                _, _, job = q.get_nowait()
            else:
                _, _, job = await asyncio.wait_for(q.get(), timeout)
        except (asyncio.QueueEmpty, TimeoutError):
            return None
        return job

    async def size(self, queue: str) -> int:
        return self._queue(str(queue)).qsize()

    async def close(self) -> None:
        self._queues.clear()


class RedisJobQueue:
    """One sorted set per queue; score orders by priority, then enqueue time."""

    KEY_PREFIX = "tradeguard:queue:"

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisJobQueue":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _key(self, queue: str) -> str:
        return f"{self.KEY_PREFIX}{queue}"

    async def enqueue(
        self, queue: str, name: str, payload: dict[str, Any], priority: int = 5
    ) -> Job:
        job = Job(queue=str(queue), name=str(name), payload=payload, priority=priority)
        await self.put(job)
        return job

    async def put(self, job: Job) -> None:
        score = job.priority * 10**13 + int(time.time() * 1000)
        await self._client.zadd(self._key(job.queue), {job.to_json(): score})

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Job | None:
        key = self._key(str(queue))
        if timeout <= 0:
            popped = await self._client.zpopmin(key)
            if not popped:
                return None
            member, _ = popped[0]
        else:
            popped = await self._client.bzpopmin(key, timeout=timeout)
            if popped is None:
                return None
            _, member, _ = popped
        return Job.from_json(member)

    async def size(self, queue: str) -> int:
        return await self._client.zcard(self._key(str(queue)))

    async def close(self) -> None:
        await self._client.aclose()
