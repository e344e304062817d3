"""
Access-token caching shared across report requests.

A ``ConnectionManager`` owns one ``TokenCache`` per connected account. The
first request that finds the token missing or stale refreshes it while
holding that account's lock; concurrent requests wait on the lock and then
reuse the fresh value instead of refreshing again. Refreshed tokens are
handed to an optional ``persist`` callback so other processes see them too.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from scripts.lib.logger import setup_logger

logger = setup_logger("token_cache")


@dataclass
class AccessToken:
    token: str
    expires_at: Optional[float] = None  # epoch seconds; None never expires


class TokenCache:
    """Holds one token and reports it as absent once it is about to expire."""

    def __init__(self, clock: Callable[[], float] = time.time, skew_seconds: float = 60.0):
        self._clock = clock
        self._skew = skew_seconds
        self._token: Optional[AccessToken] = None

    def get(self) -> Optional[str]:
        if self._token is None:
            return None
        expires_at = self._token.expires_at
        if expires_at is not None and self._clock() >= expires_at - self._skew:
            return None
        return self._token.token

    def set(self, token: AccessToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    @property
    def expires_at(self) -> Optional[float]:
        return self._token.expires_at if self._token else None


Refresher = Callable[[dict], Awaitable[AccessToken]]
Persister = Callable[[str, AccessToken], object]


class ConnectionManager:
    """
    Hands out access tokens for connected accounts.

    Args:
        refresher: coroutine producing a fresh AccessToken for an account row.
        persist: optional callback (sync or async) receiving the account id
            and the refreshed token.
        clock: time source, injectable for tests.
    """

    def __init__(
        self,
        refresher: Refresher,
        persist: Optional[Persister] = None,
        clock: Callable[[], float] = time.time,
        skew_seconds: float = 60.0,
    ):
        self._refresher = refresher
        self._persist = persist
        self._clock = clock
        self._skew = skew_seconds
        self._caches: Dict[str, TokenCache] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def cache_for(self, account_id: str) -> TokenCache:
        if account_id not in self._caches:
            self._caches[account_id] = TokenCache(self._clock, self._skew)
        return self._caches[account_id]

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        if account_id not in self._locks:
            self._locks[account_id] = asyncio.Lock()
        return self._locks[account_id]

    def invalidate(self, account_id: str) -> None:
        """Forget the cached token, e.g. after the API rejected it."""
        cache = self._caches.get(account_id)
        if cache:
            cache.clear()

    async def get_access_token(self, account: dict) -> str:
        account_id = str(account["id"])
        cache = self.cache_for(account_id)

        token = cache.get()
        if token:
            return token

        async with self._lock_for(account_id):
            # Another request may have refreshed while we waited
            token = cache.get()
            if token:
                return token

            fresh = await self._refresher(account)
            cache.set(fresh)
            logger.info(
                "Refreshed access token for account %s (expires: %s)",
                account_id, fresh.expires_at or "never",
            )

            if self._persist is not None:
                try:
                    outcome = self._persist(account_id, fresh)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.warning("Failed to persist token for %s: %s", account_id, e)

            return fresh.token
