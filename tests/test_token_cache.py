"""Tests for access-token caching and single-flight refresh."""

import asyncio

import pytest

from scripts.lib.token_cache import AccessToken, ConnectionManager, TokenCache


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingRefresher:
    def __init__(self, ttl=3600, clock=None):
        self.calls = 0
        self.ttl = ttl
        self.clock = clock or Clock()

    async def __call__(self, account):
        self.calls += 1
        await asyncio.sleep(0)
        return AccessToken(f"token-{self.calls}", self.clock() + self.ttl)


class TestTokenCache:
    def test_stale_inside_skew(self):
        clock = Clock()
        cache = TokenCache(clock, skew_seconds=60)
        cache.set(AccessToken("abc", 1100))
        assert cache.get() == "abc"
        clock.now = 1041
        assert cache.get() is None

    def test_never_expiring_token(self):
        cache = TokenCache(Clock())
        cache.set(AccessToken("pat", None))
        assert cache.get() == "pat"


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_concurrent_requests_refresh_once(self):
        clock = Clock()
        refresher = CountingRefresher(clock=clock)
        manager = ConnectionManager(refresher, clock=clock)
        tokens = await asyncio.gather(*[
            manager.get_access_token({"id": "acc"}) for _ in range(10)
        ])
        assert refresher.calls == 1
        assert set(tokens) == {"token-1"}

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_and_persisted(self):
        clock = Clock()
        refresher = CountingRefresher(ttl=120, clock=clock)
        saved = []
        manager = ConnectionManager(refresher, persist=lambda aid, t: saved.append((aid, t.token)), clock=clock)

        assert await manager.get_access_token({"id": "acc"}) == "token-1"
        clock.now += 61
        assert await manager.get_access_token({"id": "acc"}) == "token-2"
        assert saved == [("acc", "token-1"), ("acc", "token-2")]

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self):
        refresher = CountingRefresher()
        manager = ConnectionManager(refresher, clock=refresher.clock)
        await manager.get_access_token({"id": "acc"})
        manager.invalidate("acc")
        assert await manager.get_access_token({"id": "acc"}) == "token-2"

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged_not_raised(self, caplog):
        async def broken_persist(account_id, token):
            raise RuntimeError("db down")

        manager = ConnectionManager(CountingRefresher(), persist=broken_persist)
        assert await manager.get_access_token({"id": 7}) == "token-1"
        assert "Failed to persist token for 7" in caplog.text
