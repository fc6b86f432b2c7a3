"""
Per-account mutual exclusion around token refresh + publish.

Most OAuth providers invalidate a refresh token after its first use, so two
publishes for the same account must never refresh concurrently. The lock is
held across refresh and publish for one account only, never across a batch.

Backends:
- "local": one asyncio.Lock per account id (single worker process)
- "redis": a size-1 Redis sorted-set semaphore per account (many workers)
  - key: lock:account:{account_id}
  - members: unique tokens (UUIDs)
  - scores: expiry timestamps, so a crashed holder frees the lock after TTL
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis

from viralflow.settings import get_settings

logger = logging.getLogger(__name__)


class AccountLockManager:
    """In-process locks keyed by account id."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _get(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    def is_locked(self, account_id: str) -> bool:
        lock = self._locks.get(account_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        async with self._get(account_id):
            yield

    async def aclose(self) -> None:
        self._locks.clear()


class RedisAccountLockManager(AccountLockManager):
    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        *,
        ttl_sec: int | None = None,
        wait_timeout_sec: int | None = None,
    ):
        super().__init__()
        settings = get_settings()
        self._redis = redis_client
        self.ttl_sec = ttl_sec if ttl_sec is not None else settings.account_lock_ttl_sec
        self.wait_timeout_sec = wait_timeout_sec if wait_timeout_sec is not None else settings.account_lock_wait_timeout_sec

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(get_settings().redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def _key(account_id: str) -> str:
        return f"lock:account:{account_id}"

    async def acquire(self, account_id: str) -> str:
        """Acquire the account lock and return its token.

        Raises:
            TimeoutError: if wait_timeout_sec is exceeded
        """
        r = self.redis
        key = self._key(account_id)
        token = str(uuid.uuid4())
        deadline = time.monotonic() + self.wait_timeout_sec
        backoff = 0.5

        while True:
            now_ts = time.time()
            await r.zremrangebyscore(key, "-inf", now_ts)

            if await r.zcard(key) == 0:
                added = await r.zadd(key, {token: now_ts + self.ttl_sec}, nx=True)
                # Another worker may have slipped in between zcard and zadd
                if added and await r.zcard(key) == 1:
                    logger.info(f"[account_lock] Acquired account={account_id} (token={token[:8]}…)")
                    return token
                if added:
                    await r.zrem(key, token)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"Account lock '{account_id}': timed out waiting {self.wait_timeout_sec}s")

            await asyncio.sleep(min(backoff, remaining))
            backoff = min(backoff * 1.5, 5.0)

    async def release(self, account_id: str, token: str) -> None:
        removed = await self.redis.zrem(self._key(account_id), token)
        if removed:
            logger.info(f"[account_lock] Released account={account_id} (token={token[:8]}…)")
        else:
            logger.warning(f"[account_lock] Release account={account_id}: token {token[:8]}… not found (expired?)")

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        # The local lock keeps coroutines of this process from polling Redis against each other
        async with self._get(account_id):
            token = await self.acquire(account_id)
            try:
                yield
            finally:
                await self.release(account_id, token)

    async def aclose(self) -> None:
        await super().aclose()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def get_lock_manager(backend: str | None = None) -> AccountLockManager:
    backend = backend or get_settings().account_lock_backend
    if backend == "redis":
        return RedisAccountLockManager()
    if backend != "local":
        raise ValueError(f"Unknown account lock backend: {backend}")
    return AccountLockManager()
