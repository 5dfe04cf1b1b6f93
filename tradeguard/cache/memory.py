"""In-process TTL cache with the same async surface as RedisCache."""

import json
import time
from collections.abc import Callable
from typing import Any


class MemoryCache:
    """Single-process cache. Expiry is evaluated lazily against ``clock``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return raw

    async def get(self, key: str) -> Any:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = (json.dumps(value, default=str), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def incr(self, key: str) -> int:
        """Atomically add one. Keeps any existing expiry, like Redis INCR."""
        raw = self._live(key)
        value = int(json.loads(raw)) + 1 if raw is not None else 1
        expires_at = self._data[key][1] if raw is not None else None
        self._data[key] = (json.dumps(value), expires_at)
        return value

    async def expire(self, key: str, ttl: float) -> None:
        raw = self._live(key)
        if raw is not None:
            self._data[key] = (raw, self._clock() + ttl)

    async def ttl(self, key: str) -> float | None:
        """Seconds left, or None when the key is missing or has no expiry."""
        if self._live(key) is None:
            return None
        expires_at = self._data[key][1]
        return None if expires_at is None else expires_at - self._clock()

    async def close(self) -> None:
        self._data.clear()
