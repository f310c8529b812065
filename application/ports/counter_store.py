"""
Counter store port (contracts-first).

Window counters for rate limiting, lockout and fraud velocity live in an
external store that provides atomic increment. The application only
depends on this contract; Redis and in-memory implementations live in
infrastructure.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class WindowCount:
    """Counter value and remaining window lifetime (ms, 0 if unknown)."""
    count: int
    ttl_ms: int


class CounterStorePort(Protocol):
    async def incr_window(self, key: str, window_ms: int) -> WindowCount:
        """Atomically increment ``key``.

        The first increment opens the window with TTL ``window_ms``;
        later increments never extend it (fixed window).
        """
        ...

    async def incr_sliding(self, key: str, now_ms: int, window_ms: int) -> WindowCount:
        """Record one event at ``now_ms`` and count events in the trailing window.

        Events older than ``window_ms`` drop out individually (sliding window);
        ``ttl_ms`` is the time until the oldest counted event leaves.
        """
        ...

    async def count_sliding(self, key: str, now_ms: int, window_ms: int) -> WindowCount: ...

    async def peek(self, key: str) -> WindowCount: ...

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool: ...

    async def set(self, key: str, value: str, ttl_ms: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def ttl_ms(self, key: str) -> int: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def health_check(self) -> bool: ...


__all__ = ["WindowCount", "CounterStorePort"]
