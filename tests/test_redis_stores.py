from datetime import datetime, timezone

import pytest

pytest.importorskip("fakeredis")

from fakeredis import aioredis as fake_aioredis

from application.ports.revocation_store import RevocationEntry
from domain.common.exceptions import StoreUnavailableError
from infrastructure.adapters.redis_stores import RedisCounterStore, RedisRevocationStore
from infrastructure.external.cache import RedisClient


@pytest.fixture
async def redis_client():
    client = RedisClient(fake_aioredis.FakeRedis(decode_responses=True), namespace="test")
    yield client
    await client.close()


@pytest.mark.asyncio
async def test_incr_window_opens_fixed_window(redis_client):
    store = RedisCounterStore(redis_client)
    first = await store.incr_window("rl:auth:x", 60_000)
    second = await store.incr_window("rl:auth:x", 60_000)
    assert (first.count, second.count) == (1, 2)
    assert 0 < second.ttl_ms <= 60_000
    # 命名空间前缀
    assert await redis_client.client.exists("test:rl:auth:x") == 1


@pytest.mark.asyncio
async def test_incr_window_repairs_missing_ttl(redis_client):
    await redis_client.client.set("test:rl:stuck", 3)
    counted = await RedisCounterStore(redis_client).incr_window("rl:stuck", 5_000)
    assert counted.count == 4
    assert counted.ttl_ms == 5_000
    assert 0 < await redis_client.client.pttl("test:rl:stuck") <= 5_000


@pytest.mark.asyncio
async def test_incr_sliding_counts_trailing_window(redis_client):
    store = RedisCounterStore(redis_client)
    window = 900_000
    start = 1_700_000_000_000

    await store.incr_sliding("lockout:fail:k", start, window)
    for _ in range(3):
        counted = await store.incr_sliding("lockout:fail:k", start + 890_000, window)
    assert counted.count == 4

    # start 时刻的事件已移出窗口
    later = start + 910_000
    await store.incr_sliding("lockout:fail:k", later, window)
    counted = await store.incr_sliding("lockout:fail:k", later, window)
    assert counted.count == 5
    assert counted.ttl_ms == 880_000

    peeked = await store.count_sliding("lockout:fail:k", later, window)
    assert (peeked.count, peeked.ttl_ms) == (5, 880_000)
    assert (await store.count_sliding("lockout:fail:k", later + window, window)).count == 0
    assert 0 < await redis_client.client.pttl("test:lockout:fail:k") <= window

    assert await store.delete("lockout:fail:k") == 1
    assert (await store.count_sliding("lockout:fail:k", later, window)).count == 0


@pytest.mark.asyncio
async def test_counter_store_basic_operations(redis_client):
    store = RedisCounterStore(redis_client)
    assert (await store.peek("missing")).count == 0
    assert await store.set_if_absent("k", "v1", 10_000)
    assert not await store.set_if_absent("k", "v2", 10_000)
    assert await store.get("k") == "v1"
    assert await store.exists("k")
    assert await store.ttl_ms("k") > 0
    assert await store.delete("k", "missing") == 1
    assert not await store.exists("k")
    assert await store.health_check()


@pytest.mark.asyncio
async def test_revocation_store_keeps_first_entry(redis_client):
    store = RedisRevocationStore(redis_client)
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    entry = RevocationEntry(user_id=1, session_id="s1", reason="logout", expires_at=now, revoked_at=now)

    assert await store.add("abc", entry, 60)
    assert not await store.add("abc", entry.model_copy(update={"reason": "rotated"}), 60)
    assert await store.contains("abc")
    stored = await store.get("abc")
    assert stored.reason == "logout"
    assert stored.session_id == "s1"
    assert await store.get("other") is None


class _FailingRedis:
    async def get(self, key):
        from redis.exceptions import ConnectionError

        raise ConnectionError("connection refused")

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_redis_errors_surface_as_store_unavailable():
    client = RedisClient(_FailingRedis(), namespace="test")
    with pytest.raises(StoreUnavailableError) as exc_info:
        await client.get("anything")
    assert exc_info.value.store == "redis"
    assert exc_info.value.operation == "get"
