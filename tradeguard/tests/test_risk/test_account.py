"""Tests for cached account value lookup."""

from tradeguard.errors import BrokerNetworkError
from tradeguard.risk.account import AccountValueProvider


class TestAccountValueProvider:
    async def test_reads_net_equity_and_caches(self, cache, sessions, broker):
        broker.margins = {"equity": {"net": 250_000.0}}
        provider = AccountValueProvider(cache, sessions)
        assert await provider.get("user-1") == 250_000.0

        broker.margins = {"equity": {"net": 1.0}}
        assert await provider.get("user-1") == 250_000.0
        assert sessions.opened == ["user-1"]

    async def test_cache_expires(self, cache, sessions, broker, clock):
        provider = AccountValueProvider(cache, sessions, ttl_seconds=300)
        await provider.get("user-1")
        broker.margins = {"equity": {"net": 5.0}}
        clock.advance(301)
        assert await provider.get("user-1") == 5.0

    async def test_fallback_without_credential(self, cache, sessions):
        provider = AccountValueProvider(cache, sessions, fallback=50_000.0)
        assert await provider.get("ghost") == 50_000.0

    async def test_fallback_on_broker_error(self, cache, sessions, broker):
        broker.margins = BrokerNetworkError("timeout")
        provider = AccountValueProvider(cache, sessions, fallback=75_000.0)
        assert await provider.get("user-1") == 75_000.0
        assert await cache.get("account_value:user-1") is None

    async def test_missing_equity_uses_fallback(self, cache, sessions, broker):
        broker.margins = {"commodity": {"net": 10.0}}
        provider = AccountValueProvider(cache, sessions, fallback=1_000.0)
        assert await provider.get("user-1") == 1_000.0
