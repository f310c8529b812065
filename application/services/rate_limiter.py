"""
限流服务 - 固定窗口计数器

计数存放在外部存储中，依赖存储的原子自增；窗口由首次自增创建，
之后的请求不会延长窗口。存储不可用时异常向上传播（fail closed）。
"""
from __future__ import annotations

from dataclasses import dataclass
import math

from application.ports.counter_store import CounterStorePort
from core.config import RateLimitSettings
from core.logging_config import get_logger


logger = get_logger(__name__)

AUTH = "auth"
API = "api"
PAYMENT = "payment"
SIGNUP = "signup"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_ms: int
    limit: int

    @property
    def retry_after_seconds(self) -> int:
        if self.allowed:
            return 0
        return max(1, math.ceil(self.retry_after_ms / 1000))


class RateLimiter:

    def __init__(self, store: CounterStorePort, rules: RateLimitSettings):
        self._store = store
        self._rules = rules

    @staticmethod
    def _key(endpoint_class: str, identity: str) -> str:
        return f"rl:{endpoint_class}:{identity}"

    async def check_and_consume(self, key: str, window_ms: int, max_requests: int) -> RateLimitDecision:
        """计数并判定；第 max_requests+1 次请求起拒绝，直到窗口结束"""
        counted = await self._store.incr_window(key, window_ms)
        allowed = counted.count <= max_requests
        remaining = max(0, max_requests - counted.count)
        retry_after_ms = 0 if allowed else (counted.ttl_ms or window_ms)
        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                key=key,
                count=counted.count,
                limit=max_requests,
                retry_after_ms=retry_after_ms,
            )
        return RateLimitDecision(
            allowed=allowed,
            remaining=remaining,
            retry_after_ms=retry_after_ms,
            limit=max_requests,
        )

    async def check(self, endpoint_class: str, identity: str) -> RateLimitDecision:
        """按端点类别的配置限流"""
        rule = self._rules.rule_for(endpoint_class)
        return await self.check_and_consume(
            self._key(endpoint_class, identity), rule.window_ms, rule.max_requests
        )

    async def peek(self, endpoint_class: str, identity: str) -> RateLimitDecision:
        """查看当前额度，不消耗"""
        rule = self._rules.rule_for(endpoint_class)
        counted = await self._store.peek(self._key(endpoint_class, identity))
        exhausted = counted.count >= rule.max_requests
        return RateLimitDecision(
            allowed=not exhausted,
            remaining=max(0, rule.max_requests - counted.count),
            retry_after_ms=counted.ttl_ms if exhausted else 0,
            limit=rule.max_requests,
        )

    async def reset(self, endpoint_class: str, identity: str) -> None:
        await self._store.delete(self._key(endpoint_class, identity))
        logger.info("rate_limit_reset", endpoint_class=endpoint_class, identity=identity)


def auth_identity(ip: str, email: str) -> str:
    """登录限流键：ip:email，避免同一 NAT 出口下的无关用户被连坐"""
    return f"{ip}:{(email or '').strip().lower()}"
