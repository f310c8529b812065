"""
会话实体 - 一个已认证的设备/浏览器实例

状态机：Created(active) → Extended(active, 可重复) → Expired/Invalidated（终态，不可逆）
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


END_LOGOUT = "logout"
END_EXPIRED = "expired"
END_CONCURRENT_LIMIT = "concurrent_session_limit"
END_REVOKED = "revoked"


@dataclass
class Session:
    session_id: str
    user_id: int
    token_hash: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    absolute_expires_at: datetime
    is_active: bool = True
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def start(
        cls,
        *,
        session_id: str,
        user_id: int,
        token_hash: str,
        now: datetime,
        idle: timedelta,
        absolute: timedelta,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "Session":
        ceiling = now + absolute
        return cls(
            session_id=session_id,
            user_id=user_id,
            token_hash=token_hash,
            created_at=now,
            last_activity=now,
            expires_at=min(now + idle, ceiling),
            absolute_expires_at=ceiling,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)

    def touch(self, now: datetime, idle: timedelta) -> bool:
        """滑动续期；终态或已过期的会话不做任何修改"""
        if not self.is_valid(now):
            return False
        self.last_activity = max(self.last_activity, now)
        candidate = min(now + idle, self.absolute_expires_at)
        # expires_at 只增不减，且不超过绝对上限
        self.expires_at = max(self.expires_at, candidate)
        return True

    def invalidate(self, now: datetime, reason: str) -> bool:
        if not self.is_active:
            return False
        self.is_active = False
        self.ended_at = now
        self.end_reason = reason
        return True
