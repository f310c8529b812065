"""
安全相关仓储接口
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .events import SecurityEvent
from .lockout import AccountLockout, AuthAttemptRecord
from .session import Session


class SessionRepository(ABC):

    @abstractmethod
    async def add(self, session: Session) -> Session:
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def save(self, session: Session) -> Session:
        """持久化会话状态变更（续期/失效）"""
        ...

    @abstractmethod
    async def list_active(self, user_id: int) -> list[Session]:
        """按创建时间升序返回仍为 active 的会话"""
        ...


class AuthAttemptRepository(ABC):

    @abstractmethod
    async def add(self, record: AuthAttemptRecord) -> AuthAttemptRecord:
        ...

    @abstractmethod
    async def count_failures_since(self, email: str, ip_address: str, since: datetime) -> int:
        ...


class AccountLockoutRepository(ABC):

    @abstractmethod
    async def upsert(self, lockout: AccountLockout) -> AccountLockout:
        ...

    @abstractmethod
    async def get_active(self, email: str, ip_address: str, now: datetime) -> Optional[AccountLockout]:
        ...

    @abstractmethod
    async def clear(self, email: str, ip_address: str, now: datetime) -> int:
        ...


class SecurityEventRepository(ABC):

    @abstractmethod
    async def add(self, event: SecurityEvent) -> SecurityEvent:
        ...

    @abstractmethod
    async def list_recent(
        self,
        limit: int = 50,
        event_type: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> list[SecurityEvent]:
        ...
