"""In-process implementations of the counter and revocation ports.

Used when ``redis.url`` is not configured (local development, tests).
Expiry follows the injected clock, so time-travel tests behave the same
as against Redis. All mutations run under one asyncio lock.
"""
from __future__ import annotations

import asyncio
import bisect
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from application.ports.counter_store import CounterStorePort, WindowCount
from application.ports.revocation_store import RevocationEntry, RevocationStorePort
from shared.clock import Clock, utc_now


@dataclass
class _Item:
    value: str
    expires_at: Optional[datetime]


class InMemoryCounterStore(CounterStorePort):
    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._items: dict[str, _Item] = {}
        # 滑动窗口：键 -> 升序的事件时间戳（毫秒）
        self._series: dict[str, list[int]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[_Item]:
        item = self._items.get(key)
        if item is None:
            return None
        if item.expires_at is not None and self._clock() >= item.expires_at:
            del self._items[key]
            return None
        return item

    def _remaining_ms(self, item: _Item) -> int:
        if item.expires_at is None:
            return 0
        return max(0, int((item.expires_at - self._clock()).total_seconds() * 1000))

    def _expiry(self, ttl_ms: Optional[int]) -> Optional[datetime]:
        if not ttl_ms or ttl_ms <= 0:
            return None
        return self._clock() + timedelta(milliseconds=ttl_ms)

    async def incr_window(self, key: str, window_ms: int) -> WindowCount:
        async with self._lock:
            item = self._live(key)
            if item is None:
                item = _Item(value="0", expires_at=self._expiry(window_ms))
                self._items[key] = item
            item.value = str(int(item.value) + 1)
            return WindowCount(count=int(item.value), ttl_ms=self._remaining_ms(item))

    def _trailing(self, key: str, now_ms: int, window_ms: int) -> list[int]:
        floor = now_ms - window_ms
        kept = [ts for ts in self._series.get(key, ()) if ts > floor]
        if kept:
            self._series[key] = kept
        else:
            self._series.pop(key, None)
        return kept

    async def incr_sliding(self, key: str, now_ms: int, window_ms: int) -> WindowCount:
        async with self._lock:
            kept = self._trailing(key, now_ms, window_ms)
            bisect.insort(kept, now_ms)
            self._series[key] = kept
            return WindowCount(count=len(kept), ttl_ms=max(0, kept[0] + window_ms - now_ms))

    async def count_sliding(self, key: str, now_ms: int, window_ms: int) -> WindowCount:
        async with self._lock:
            kept = self._trailing(key, now_ms, window_ms)
            if not kept:
                return WindowCount(count=0, ttl_ms=0)
            return WindowCount(count=len(kept), ttl_ms=max(0, kept[0] + window_ms - now_ms))

    async def peek(self, key: str) -> WindowCount:
        item = self._live(key)
        if item is None:
            return WindowCount(count=0, ttl_ms=0)
        try:
            count = int(item.value)
        except ValueError:
            count = 0
        return WindowCount(count=count, ttl_ms=self._remaining_ms(item))

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._items[key] = _Item(value=value, expires_at=self._expiry(ttl_ms))
            return True

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        async with self._lock:
            self._items[key] = _Item(value=value, expires_at=self._expiry(ttl_ms))

    async def get(self, key: str) -> Optional[str]:
        item = self._live(key)
        return item.value if item else None

    async def ttl_ms(self, key: str) -> int:
        item = self._live(key)
        return self._remaining_ms(item) if item else 0

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._items[key]
                    removed += 1
                elif self._series.pop(key, None):
                    removed += 1
            return removed

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None or bool(self._series.get(key))

    async def health_check(self) -> bool:
        return True


class InMemoryRevocationStore(RevocationStorePort):
    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._entries: dict[str, tuple[RevocationEntry, datetime]] = {}
        self._lock = asyncio.Lock()

    def _live(self, token_hash: str) -> Optional[RevocationEntry]:
        found = self._entries.get(token_hash)
        if found is None:
            return None
        entry, prune_at = found
        if self._clock() >= prune_at:
            del self._entries[token_hash]
            return None
        return entry

    async def add(self, token_hash: str, entry: RevocationEntry, ttl_seconds: int) -> bool:
        async with self._lock:
            if self._live(token_hash) is not None:
                return False
            self._entries[token_hash] = (entry, self._clock() + timedelta(seconds=max(1, ttl_seconds)))
            return True

    async def contains(self, token_hash: str) -> bool:
        return self._live(token_hash) is not None

    async def get(self, token_hash: str) -> Optional[RevocationEntry]:
        return self._live(token_hash)
