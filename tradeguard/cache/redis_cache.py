"""Redis-backed cache (redis.asyncio) shared across worker processes."""

import json
import logging
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisCache:
    """JSON values over plain Redis strings.

    Counters written by ``incr`` are stored as bare integers, which also decode
    as JSON, so ``get`` works on them too.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any:
        raw = await self.client.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        payload = json.dumps(value, default=str)
        if ttl is None:
            await self.client.set(key, payload)
        else:
            await self.client.set(key, payload, ex=max(1, int(ttl)))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    async def expire(self, key: str, ttl: float) -> None:
        await self.client.expire(key, max(1, int(ttl)))

    async def ttl(self, key: str) -> float | None:
        remaining = await self.client.ttl(key)
        return None if remaining < 0 else float(remaining)

    async def close(self) -> None:
        await self.client.aclose()
