"""
会话管理服务 - 创建、续期、失效会话

- 空闲窗口（默认30分钟）内的每次认证请求都会滑动续期
- 续期不超过创建时确定的绝对上限
- 失效只置 active=false，不删除记录（审计保留）
- 单用户并发会话超过上限时，最早的会话被挤下线
"""
from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional

from core.config import SessionSettings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.security.session import END_CONCURRENT_LIMIT, END_EXPIRED, Session
from application.services.token_service import hash_token
from shared.clock import Clock, utc_now


logger = get_logger(__name__)


class SessionManager:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        config: SessionSettings,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._idle = timedelta(minutes=config.idle_minutes)
        self._absolute = timedelta(hours=config.absolute_hours)
        self._max_concurrent = config.max_concurrent
        self._clock = clock

    @property
    def idle_window(self) -> timedelta:
        return self._idle

    async def create_session(
        self,
        user_id: int,
        token: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        *,
        session_id: str,
    ) -> Session:
        now = self._clock()
        session = Session.start(
            session_id=session_id,
            user_id=user_id,
            token_hash=hash_token(token),
            now=now,
            idle=self._idle,
            absolute=self._absolute,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        async with self._uow_factory() as uow:
            created = await uow.session_repository.add(session)
            active = await uow.session_repository.list_active(user_id)
            live = [s for s in active if s.is_valid(now)]
            overflow = len(live) - self._max_concurrent
            if overflow > 0:
                for old in live[:overflow]:
                    if old.session_id == created.session_id:
                        continue
                    old.invalidate(now, END_CONCURRENT_LIMIT)
                    await uow.session_repository.save(old)
                    logger.info(
                        "session_evicted",
                        user_id=user_id,
                        session_id=old.session_id,
                        reason=END_CONCURRENT_LIMIT,
                    )

        logger.info(
            "session_created",
            user_id=user_id,
            session_id=session_id,
            expires_at=created.expires_at.isoformat(),
        )
        return created

    async def touch(self, session_id: str) -> bool:
        """滑动续期；会话已失效或过期时不做修改，返回 False"""
        now = self._clock()
        async with self._uow_factory() as uow:
            session = await uow.session_repository.get(session_id)
            if session is None or not session.touch(now, self._idle):
                return False
            await uow.session_repository.save(session)
        return True

    async def rotate_token(self, session_id: str, token: str) -> bool:
        """刷新令牌轮换：更新会话绑定的令牌哈希并续期"""
        now = self._clock()
        async with self._uow_factory() as uow:
            session = await uow.session_repository.get(session_id)
            if session is None or not session.touch(now, self._idle):
                return False
            session.token_hash = hash_token(token)
            await uow.session_repository.save(session)
        return True

    async def invalidate(self, session_id: str, reason: str) -> bool:
        now = self._clock()
        async with self._uow_factory() as uow:
            session = await uow.session_repository.get(session_id)
            if session is None or not session.invalidate(now, reason):
                return False
            await uow.session_repository.save(session)
        logger.info("session_invalidated", session_id=session_id, user_id=session.user_id, reason=reason)
        return True

    async def is_valid(self, session_id: str, user_id: int) -> bool:
        async with self._uow_factory(readonly=True) as uow:
            session = await uow.session_repository.get(session_id)
        if session is None or session.user_id != user_id:
            return False
        return session.is_valid(self._clock())

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.session_repository.get(session_id)

    async def expire_if_stale(self, session_id: str) -> bool:
        """已过期但仍标记 active 的会话转入终态。返回是否发生了转移"""
        now = self._clock()
        async with self._uow_factory() as uow:
            session = await uow.session_repository.get(session_id)
            if session is None or not session.is_active or not session.is_expired(now):
                return False
            session.invalidate(now, END_EXPIRED)
            await uow.session_repository.save(session)
        logger.info("session_expired", session_id=session_id, user_id=session.user_id)
        return True

    async def list_active(self, user_id: int) -> list[Session]:
        now = self._clock()
        async with self._uow_factory(readonly=True) as uow:
            sessions = await uow.session_repository.list_active(user_id)
        return [s for s in sessions if s.is_valid(now)]

    async def invalidate_all(self, user_id: int, reason: str) -> int:
        now = self._clock()
        count = 0
        async with self._uow_factory() as uow:
            for session in await uow.session_repository.list_active(user_id):
                if session.invalidate(now, reason):
                    await uow.session_repository.save(session)
                    count += 1
        logger.info("sessions_invalidated", user_id=user_id, count=count, reason=reason)
        return count
