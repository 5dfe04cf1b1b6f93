"""Per-user consecutive-failure counter that escalates to the kill switch."""

import logging

from tradeguard.models.common import utc_now_iso
from tradeguard.models.risk import RiskCheckResult
from tradeguard.risk.checks import circuit_breaker as circuit_breaker_check
from tradeguard.risk.kill_switch import KillSwitch

logger = logging.getLogger(__name__)

KEY_PREFIX = "risk:circuit_breaker:"


class CircuitBreaker:
    """Failure count lives in one cache entry whose TTL restarts on every failure."""

    def __init__(
        self,
        cache,
        kill_switch: KillSwitch,
        threshold: int = 5,
        window_seconds: int = 300,
    ):
        self.cache = cache
        self.kill_switch = kill_switch
        self.threshold = threshold
        self.window_seconds = window_seconds

    def _key(self, user_id: str) -> str:
        return f"{KEY_PREFIX}{user_id}"

    async def failure_count(self, user_id: str) -> int:
        return int(await self.cache.get(self._key(user_id)) or 0)

    async def check(self, user_id: str) -> RiskCheckResult:
        return circuit_breaker_check.check(await self.failure_count(user_id), self.threshold)

    async def state(self, user_id: str) -> dict:
        key = self._key(user_id)
        return {
            "failure_count": int(await self.cache.get(key) or 0),
            "last_failure_at": await self.cache.get(f"{key}:last_failure_at"),
        }

    async def increment(self, user_id: str) -> int | None:
        """Count one failure. Trips the kill switch at the threshold. Never raises."""
        key = self._key(user_id)
        try:
            count = await self.cache.incr(key)
            await self.cache.expire(key, self.window_seconds)
            await self.cache.set(
                f"{key}:last_failure_at", utc_now_iso(), ttl=self.window_seconds
            )
        except Exception:
            logger.exception("Error incrementing circuit breaker for user %s", user_id)
            return None

        logger.warning("Circuit breaker count: %d for user %s", count, user_id)
        if count >= self.threshold:
            await self.kill_switch.auto_trigger(
                user_id, f"Circuit breaker: {count} consecutive failures"
            )
        return count

    async def reset(self, user_id: str) -> None:
        key = self._key(user_id)
        try:
            await self.cache.delete(key)
            await self.cache.delete(f"{key}:last_failure_at")
        except Exception:
            logger.exception("Error resetting circuit breaker for user %s", user_id)
