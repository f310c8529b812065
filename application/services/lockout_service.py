"""
账户锁定跟踪 - 记录认证尝试，窗口内失败达到阈值即锁定

- 规范键：(邮箱, IP) 组合，记录与检查一致
- 失败计数是尾随窗口（滑动窗口）：每次失败单独计时，窗口外的失败逐条移出；
  计数使用存储的原子操作，避免并发请求读到旧值后越过阈值
- 锁定键的值同时保存解锁时间与触发次数
- 每次尝试都追加一条 AuthAttemptRecord（审计用）
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Callable, Optional

from application.ports.counter_store import CounterStorePort
from core.config import LockoutSettings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.security.lockout import (
    AccountLockout,
    AuthAttemptRecord,
    LockKey,
    LockStatus,
    LockoutPolicy,
    UNLOCKED,
)
from shared.clock import Clock, ensure_utc, utc_now


logger = get_logger(__name__)


def policy_from_settings(config: LockoutSettings) -> LockoutPolicy:
    return LockoutPolicy(
        max_attempts=config.max_attempts,
        window=timedelta(minutes=config.window_minutes),
        cooldown=timedelta(minutes=config.lockout_minutes),
    )


class AccountLockoutTracker:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        store: CounterStorePort,
        policy: LockoutPolicy,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._store = store
        self._policy = policy
        self._clock = clock

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    @property
    def _window_ms(self) -> int:
        return int(self._policy.window.total_seconds() * 1000)

    @staticmethod
    def _fail_key(key: LockKey) -> str:
        return f"lockout:fail:{key}"

    @staticmethod
    def _lock_key(key: LockKey) -> str:
        return f"lockout:lock:{key}"

    async def record_attempt(
        self,
        email: str,
        ip_address: Optional[str],
        success: bool,
        reason: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LockStatus:
        """记录一次认证尝试；失败时计数，达到阈值即锁定"""
        key = LockKey.of(email, ip_address)
        now = self._clock()

        async with self._uow_factory() as uow:
            await uow.auth_attempt_repository.add(
                AuthAttemptRecord(
                    email=key.email,
                    ip_address=key.ip_address,
                    success=success,
                    attempted_at=now,
                    failure_reason=None if success else reason,
                    user_agent=user_agent,
                )
            )

        if success:
            await self.clear(email, ip_address)
            return UNLOCKED

        counted = await self._store.incr_sliding(self._fail_key(key), _epoch_ms(now), self._window_ms)
        if counted.count < self._policy.max_attempts:
            logger.info(
                "auth_failure_counted",
                email=key.email,
                ip=key.ip_address,
                failures=counted.count,
                threshold=self._policy.max_attempts,
            )
            return LockStatus(locked=False, failed_attempts=counted.count)

        locked_until = now + self._policy.cooldown
        cooldown_ms = int(self._policy.cooldown.total_seconds() * 1000)
        await self._store.set(
            self._lock_key(key),
            json.dumps({"locked_until": locked_until.isoformat(), "trigger_count": counted.count}),
            cooldown_ms,
        )
        await self._store.delete(self._fail_key(key))

        async with self._uow_factory() as uow:
            await uow.lockout_repository.upsert(
                AccountLockout(
                    email=key.email,
                    ip_address=key.ip_address,
                    locked_until=locked_until,
                    trigger_count=counted.count,
                    created_at=now,
                )
            )

        logger.warning(
            "account_locked",
            email=key.email,
            ip=key.ip_address,
            failures=counted.count,
            locked_until=locked_until.isoformat(),
        )
        return LockStatus(
            locked=True,
            locked_until=locked_until,
            failed_attempts=counted.count,
            just_locked=True,
        )

    async def is_locked(self, email: str, ip_address: Optional[str]) -> LockStatus:
        key = LockKey.of(email, ip_address)
        now = self._clock()

        raw = await self._store.get(self._lock_key(key))
        if raw:
            locked_until, trigger_count = _parse_lock_value(raw)
            if locked_until is None:
                locked_until = now + timedelta(milliseconds=await self._store.ttl_ms(self._lock_key(key)))
            if now < locked_until:
                return LockStatus(locked=True, locked_until=locked_until, failed_attempts=trigger_count)

        # 计数存储被清空时，以持久化的锁定记录兜底
        async with self._uow_factory(readonly=True) as uow:
            lockout = await uow.lockout_repository.get_active(key.email, key.ip_address, now)
        if lockout is not None:
            return LockStatus(
                locked=True,
                locked_until=ensure_utc(lockout.locked_until),
                failed_attempts=lockout.trigger_count,
            )
        return UNLOCKED

    async def pending_failures(self, email: str, ip_address: Optional[str]) -> int:
        """尾随窗口内尚未触发锁定的失败计数"""
        counted = await self._store.count_sliding(
            self._fail_key(LockKey.of(email, ip_address)), _epoch_ms(self._clock()), self._window_ms
        )
        return counted.count

    async def failed_count_in_window(
        self,
        email: str,
        ip_address: Optional[str],
        window_ms: Optional[int] = None,
    ) -> int:
        """统计尾随窗口内的失败尝试数（基于审计记录）"""
        key = LockKey.of(email, ip_address)
        window = (
            timedelta(milliseconds=window_ms) if window_ms is not None else self._policy.window
        )
        since = self._clock() - window
        async with self._uow_factory(readonly=True) as uow:
            return await uow.auth_attempt_repository.count_failures_since(
                key.email, key.ip_address, since
            )

    async def clear(self, email: str, ip_address: Optional[str]) -> bool:
        """显式解锁（管理员）或成功认证后清除计数。返回是否解除了有效锁定"""
        key = LockKey.of(email, ip_address)
        now = self._clock()
        removed = await self._store.delete(self._fail_key(key), self._lock_key(key))
        async with self._uow_factory() as uow:
            cleared_rows = await uow.lockout_repository.clear(key.email, key.ip_address, now)
        if removed or cleared_rows:
            logger.info("lockout_cleared", email=key.email, ip=key.ip_address, lockouts=cleared_rows)
        return cleared_rows > 0


def _epoch_ms(moment: datetime) -> int:
    return int(ensure_utc(moment).timestamp() * 1000)


def _parse_lock_value(raw: str) -> tuple[Optional[datetime], int]:
    """锁定键的值：{"locked_until", "trigger_count"}；兼容只存 isoformat 的旧值"""
    try:
        data = json.loads(raw)
    except ValueError:
        data = {"locked_until": raw}
    if not isinstance(data, dict):
        return None, 0
    try:
        locked_until = ensure_utc(datetime.fromisoformat(data["locked_until"]))
    except (KeyError, TypeError, ValueError):
        locked_until = None
    return locked_until, int(data.get("trigger_count") or 0)
