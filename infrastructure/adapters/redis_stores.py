"""Infrastructure adapters that implement the application counter and
revocation ports on top of RedisClient.
"""
from __future__ import annotations

from typing import Optional

from application.ports.counter_store import CounterStorePort, WindowCount
from application.ports.revocation_store import RevocationEntry, RevocationStorePort
from infrastructure.external.cache import RedisClient


class RedisCounterStore(CounterStorePort):
    def __init__(self, redis: RedisClient):
        self.redis = redis

    async def incr_window(self, key: str, window_ms: int) -> WindowCount:
        count, ttl = await self.redis.incr_window(key, window_ms)
        return WindowCount(count=count, ttl_ms=ttl)

    async def incr_sliding(self, key: str, now_ms: int, window_ms: int) -> WindowCount:
        count, ttl = await self.redis.incr_sliding(key, now_ms, window_ms)
        return WindowCount(count=count, ttl_ms=ttl)

    async def count_sliding(self, key: str, now_ms: int, window_ms: int) -> WindowCount:
        count, ttl = await self.redis.count_sliding(key, now_ms, window_ms)
        return WindowCount(count=count, ttl_ms=ttl)

    async def peek(self, key: str) -> WindowCount:
        raw = await self.redis.get(key)
        if raw is None:
            return WindowCount(count=0, ttl_ms=0)
        try:
            count = int(raw)
        except ValueError:
            count = 0
        return WindowCount(count=count, ttl_ms=max(0, await self.redis.pttl(key)))

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        return await self.redis.set(key, value, ttl_ms=ttl_ms, nx=True)

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        await self.redis.set(key, value, ttl_ms=ttl_ms)

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(key)

    async def ttl_ms(self, key: str) -> int:
        return max(0, await self.redis.pttl(key))

    async def delete(self, *keys: str) -> int:
        return await self.redis.delete(*keys)

    async def exists(self, key: str) -> bool:
        return await self.redis.exists(key) > 0

    async def health_check(self) -> bool:
        return await self.redis.health_check()


class RedisRevocationStore(RevocationStorePort):
    PREFIX = "revoked"

    def __init__(self, redis: RedisClient):
        self.redis = redis

    def _key(self, token_hash: str) -> str:
        return f"{self.PREFIX}:{token_hash}"

    async def add(self, token_hash: str, entry: RevocationEntry, ttl_seconds: int) -> bool:
        return await self.redis.set(
            self._key(token_hash),
            entry.model_dump_json(),
            ttl_ms=max(1, ttl_seconds) * 1000,
            nx=True,
        )

    async def contains(self, token_hash: str) -> bool:
        return await self.redis.exists(self._key(token_hash)) > 0

    async def get(self, token_hash: str) -> Optional[RevocationEntry]:
        raw = await self.redis.get(self._key(token_hash))
        if raw is None:
            return None
        return RevocationEntry.model_validate_json(raw)
