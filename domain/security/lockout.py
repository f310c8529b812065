"""
账户锁定 - 领域数据与策略

锁定的规范键为 (邮箱, IP) 组合：记录与检查都使用同一个键。
状态机：Unlocked →(窗口内失败次数达到阈值)→ Locked(until) →(冷却结束 / 显式清除 / 成功登录)→ Unlocked
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import math


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    window: timedelta = timedelta(minutes=15)
    cooldown: timedelta = timedelta(minutes=30)


@dataclass(frozen=True)
class LockKey:
    email: str
    ip_address: str

    @classmethod
    def of(cls, email: str, ip_address: Optional[str]) -> "LockKey":
        return cls(email=(email or "").strip().lower(), ip_address=ip_address or "unknown")

    def __str__(self) -> str:
        return f"{self.email}:{self.ip_address}"


@dataclass
class AuthAttemptRecord:
    email: str
    ip_address: str
    success: bool
    attempted_at: datetime
    failure_reason: Optional[str] = None
    user_agent: Optional[str] = None
    id: Optional[int] = None


@dataclass
class AccountLockout:
    email: str
    ip_address: str
    locked_until: datetime
    trigger_count: int
    created_at: datetime
    cleared_at: Optional[datetime] = None
    id: Optional[int] = None

    def is_active(self, now: datetime) -> bool:
        return self.cleared_at is None and now < self.locked_until


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    locked_until: Optional[datetime] = None
    failed_attempts: int = 0
    just_locked: bool = False

    def retry_after_seconds(self, now: datetime) -> Optional[int]:
        if not self.locked or self.locked_until is None:
            return None
        return max(1, math.ceil((self.locked_until - now).total_seconds()))


UNLOCKED = LockStatus(locked=False)
