"""Account value lookup, memoized in the cache."""

import logging

from tradeguard.broker.sessions import BrokerSessions
from tradeguard.errors import BrokerError, CredentialUnavailableError

logger = logging.getLogger(__name__)

KEY_PREFIX = "account_value:"


class AccountValueProvider:
    """Net equity from the broker's margins endpoint.

    Falls back to a fixed value when the user has no usable credential or the
    broker cannot be reached, so loss and size checks still run.
    """

    def __init__(
        self,
        cache,
        sessions: BrokerSessions,
        fallback: float = 100_000.0,
        ttl_seconds: int = 300,
    ):
        self.cache = cache
        self.sessions = sessions
        self.fallback = fallback
        self.ttl_seconds = ttl_seconds

    async def get(self, user_id: str) -> float:
        key = f"{KEY_PREFIX}{user_id}"
        try:
            cached = await self.cache.get(key)
        except Exception:
            logger.exception("Account value cache read failed for user %s", user_id)
            cached = None
        if cached:
            return float(cached["value"])

        try:
            client = self.sessions.open(user_id)
        except CredentialUnavailableError:
            return self.fallback

        try:
            async with client:
                margins = await client.get_margins()
            value = float((margins.get("equity") or {}).get("net") or self.fallback)
        except (BrokerError, TypeError, ValueError) as e:
            logger.warning(
                "Account value unavailable for user %s (%s); using fallback %.2f",
                user_id, e, self.fallback,
            )
            return self.fallback

        try:
            await self.cache.set(key, {"value": value}, ttl=self.ttl_seconds)
        except Exception:
            logger.exception("Account value cache write failed for user %s", user_id)
        return value
