"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.user.repository import UserRepository
from domain.security.repository import (
    AccountLockoutRepository,
    AuthAttemptRepository,
    SecurityEventRepository,
    SessionRepository,
)


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    user_repository: UserRepository
    session_repository: SessionRepository
    auth_attempt_repository: AuthAttemptRepository
    lockout_repository: AccountLockoutRepository
    security_event_repository: SecurityEventRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.user_repository = None  # type: ignore[assignment]
        self.session_repository = None  # type: ignore[assignment]
        self.auth_attempt_repository = None  # type: ignore[assignment]
        self.lockout_repository = None  # type: ignore[assignment]
        self.security_event_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
