"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from functools import partial
from typing import Callable, Optional
import inspect

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import StoreUnavailableError
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.repositories.security_repository import (
    SQLAlchemyAccountLockoutRepository,
    SQLAlchemyAuthAttemptRepository,
    SQLAlchemySecurityEventRepository,
    SQLAlchemySessionRepository,
)
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.user_repository = SQLAlchemyUserRepository(self.session)
        self.session_repository = SQLAlchemySessionRepository(self.session)
        self.auth_attempt_repository = SQLAlchemyAuthAttemptRepository(self.session)
        self.lockout_repository = SQLAlchemyAccountLockoutRepository(self.session)
        self.security_event_repository = SQLAlchemySecurityEventRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            try:
                self._transaction = await self.session.begin()
            except OperationalError as exc:
                raise StoreUnavailableError("database", "begin", exc) from exc
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.user_repository = None
            self.session_repository = None
            self.auth_attempt_repository = None
            self.lockout_repository = None
            self.security_event_repository = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            try:
                await self.session.commit()
            except OperationalError as exc:
                raise StoreUnavailableError("database", "commit", exc) from exc
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def uow_factory(session_factory: Callable[[], AsyncSession]) -> Callable[..., SQLAlchemyUnitOfWork]:
    """绑定会话工厂，返回 ``factory(readonly=False)`` 形式的 UoW 工厂"""
    return partial(SQLAlchemyUnitOfWork, session_factory)
