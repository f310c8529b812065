"""
Redis客户端 - 计数器、带TTL的键值与撤销列表的底层访问

所有键自动加命名空间前缀。Redis 不可用时抛出 ``StoreUnavailableError``：
限流与锁定属于主安全闸门，存储故障时必须拒绝请求（fail closed），
不能像普通缓存那样静默降级。
"""
from __future__ import annotations

import socket
import uuid
from typing import Any, Awaitable, Callable, Optional, TypeVar

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import RedisSettings
from core.logging_config import get_logger
from domain.common.exceptions import StoreUnavailableError


logger = get_logger(__name__)

T = TypeVar("T")


class RedisClient:
    """
    Redis客户端

    特性:
    - 命名空间隔离
    - 固定窗口计数（SET NX PX + INCR + PTTL，一次 MULTI/EXEC 往返）
    - 滑动窗口计数（有序集合，ZREMRANGEBYSCORE + ZADD + ZCARD，一次 MULTI/EXEC 往返）
    - 错误统一转换为 StoreUnavailableError
    """

    def __init__(self, client: aioredis.Redis, namespace: str = ""):
        self._client = client
        self._namespace = namespace.strip(":")

    # ============= 工具方法 =============

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def _execute(self, operation: str, key: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except RedisError as e:
            logger.error("redis_operation_failed", operation=operation, key=key, error=str(e))
            raise StoreUnavailableError("redis", operation, e) from e

    # ============= 计数器 =============

    async def incr_window(self, key: str, window_ms: int) -> tuple[int, int]:
        """
        固定窗口自增

        窗口由首次自增创建（SET NX PX），后续自增不会刷新过期时间。
        返回 (当前计数, 窗口剩余毫秒)。
        """
        formatted_key = self._format_key(key)

        async def _run():
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(formatted_key, 0, px=window_ms, nx=True)
                pipe.incr(formatted_key)
                pipe.pttl(formatted_key)
                _, count, ttl = await pipe.execute()
            return int(count), int(ttl)

        count, ttl = await self._execute("incr_window", formatted_key, _run)
        if ttl < 0:
            # 键在无过期时间的状态下残留（如被外部改写），重新设定窗口
            await self._execute(
                "pexpire", formatted_key, lambda: self._client.pexpire(formatted_key, window_ms)
            )
            ttl = window_ms
        return count, ttl

    async def incr_sliding(self, key: str, now_ms: int, window_ms: int) -> tuple[int, int]:
        """
        滑动窗口自增

        每次事件作为一个成员写入有序集合（score 为毫秒时间戳），
        先剔除早于 ``now_ms - window_ms`` 的成员再计数。
        返回 (窗口内事件数, 最早事件离开窗口的剩余毫秒)。
        """
        formatted_key = self._format_key(key)
        member = f"{now_ms}:{uuid.uuid4().hex}"

        async def _run():
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(formatted_key, "-inf", now_ms - window_ms)
                pipe.zadd(formatted_key, {member: now_ms})
                pipe.zcard(formatted_key)
                pipe.zrange(formatted_key, 0, 0, withscores=True)
                pipe.pexpire(formatted_key, window_ms)
                _, _, count, oldest, _ = await pipe.execute()
            return int(count), _remaining_ms(oldest, now_ms, window_ms)

        return await self._execute("incr_sliding", formatted_key, _run)

    async def count_sliding(self, key: str, now_ms: int, window_ms: int) -> tuple[int, int]:
        """只读计数：窗口 (now_ms - window_ms, now_ms] 内的事件数"""
        formatted_key = self._format_key(key)
        floor = f"({now_ms - window_ms}"

        async def _run():
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zcount(formatted_key, floor, "+inf")
                pipe.zrangebyscore(formatted_key, floor, "+inf", start=0, num=1, withscores=True)
                count, oldest = await pipe.execute()
            return int(count), _remaining_ms(oldest, now_ms, window_ms)

        return await self._execute("count_sliding", formatted_key, _run)

    # ============= String 操作 =============

    async def get(self, key: str) -> Optional[str]:
        formatted_key = self._format_key(key)
        return await self._execute("get", formatted_key, lambda: self._client.get(formatted_key))

    async def set(
        self,
        key: str,
        value: Any,
        ttl_ms: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        """设置字符串值；nx=True 时仅当键不存在才写入"""
        formatted_key = self._format_key(key)
        result = await self._execute(
            "set",
            formatted_key,
            lambda: self._client.set(
                formatted_key,
                value,
                px=ttl_ms if ttl_ms and ttl_ms > 0 else None,
                nx=nx,
            ),
        )
        return bool(result)

    # ============= 通用操作 =============

    async def delete(self, *keys: str) -> int:
        """删除一个或多个键，返回删除的数量"""
        if not keys:
            return 0
        formatted_keys = [self._format_key(k) for k in keys]
        return int(
            await self._execute("delete", ",".join(formatted_keys), lambda: self._client.delete(*formatted_keys))
        )

    async def exists(self, *keys: str) -> int:
        """判断一个或多个键是否存在，返回存在的数量"""
        formatted_keys = [self._format_key(k) for k in keys]
        return int(
            await self._execute("exists", ",".join(formatted_keys), lambda: self._client.exists(*formatted_keys))
        )

    async def pttl(self, key: str) -> int:
        """剩余毫秒；-2 不存在，-1 无过期时间"""
        formatted_key = self._format_key(key)
        return int(await self._execute("pttl", formatted_key, lambda: self._client.pttl(formatted_key)))

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
            logger.info("redis_connection_closed")
        except RedisError as e:
            logger.error("redis_close_failed", error=str(e))

    @property
    def client(self) -> aioredis.Redis:
        return self._client


def _remaining_ms(oldest: list, now_ms: int, window_ms: int) -> int:
    """最早成员离开窗口的剩余毫秒；集合为空时为 0"""
    if not oldest:
        return 0
    _, score = oldest[0]
    return max(0, int(score) + window_ms - now_ms)


def create_redis_client(config: RedisSettings, **kwargs) -> RedisClient:
    """
    按配置创建Redis客户端（连接在首次使用时建立）

    Args:
        config: Redis 配置
        **kwargs: 其他Redis连接参数
    """
    if not config.url:
        raise RuntimeError("redis.url 未配置")

    # 构建跨平台 keepalive 选项（若可用）
    keepalive_opts = {}
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        keepalive_opts = {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }

    client = aioredis.from_url(
        config.url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=config.max_connections,
        socket_keepalive=True,
        socket_keepalive_options=keepalive_opts,
        **kwargs
    )
    logger.info("redis_client_created", namespace=config.namespace)
    return RedisClient(client=client, namespace=config.namespace)


__all__ = ["RedisClient", "create_redis_client"]
