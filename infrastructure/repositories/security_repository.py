"""
安全相关仓储实现 - 会话、认证尝试、账户锁定、安全事件
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.security.events import SecurityActor, SecurityEvent, SecurityEventType, Severity
from domain.security.lockout import AccountLockout, AuthAttemptRecord
from domain.security.repository import (
    AccountLockoutRepository,
    AuthAttemptRepository,
    SecurityEventRepository,
    SessionRepository,
)
from domain.security.session import Session
from infrastructure.models.auth_attempt import AccountLockoutModel, AuthAttemptModel
from infrastructure.models.security_event import SecurityEventModel
from infrastructure.models.session import UserSessionModel
from shared.clock import ensure_utc


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


class SQLAlchemySessionRepository(SessionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: UserSessionModel) -> Session:
        return Session(
            id=model.id,
            session_id=model.session_id,
            user_id=model.user_id,
            token_hash=model.token_hash,
            created_at=_utc(model.created_at),
            last_activity=_utc(model.last_activity),
            expires_at=_utc(model.expires_at),
            absolute_expires_at=_utc(model.absolute_expires_at),
            is_active=model.is_active,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            ended_at=_utc(model.ended_at),
            end_reason=model.end_reason,
        )

    async def _get_model(self, session_id: str) -> Optional[UserSessionModel]:
        result = await self.session.execute(
            select(UserSessionModel).where(UserSessionModel.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def add(self, session: Session) -> Session:
        model = UserSessionModel(
            session_id=session.session_id,
            user_id=session.user_id,
            token_hash=session.token_hash,
            is_active=session.is_active,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
            last_activity=session.last_activity,
            expires_at=session.expires_at,
            absolute_expires_at=session.absolute_expires_at,
        )
        self.session.add(model)
        await self.session.flush()
        session.id = model.id
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        model = await self._get_model(session_id)
        return self._to_entity(model) if model else None

    async def save(self, session: Session) -> Session:
        model = await self._get_model(session.session_id)
        if model is None:
            return await self.add(session)
        model.token_hash = session.token_hash
        model.is_active = session.is_active
        model.last_activity = session.last_activity
        model.expires_at = session.expires_at
        model.ended_at = session.ended_at
        model.end_reason = session.end_reason
        await self.session.flush()
        return session

    async def list_active(self, user_id: int) -> list[Session]:
        result = await self.session.execute(
            select(UserSessionModel)
            .where(UserSessionModel.user_id == user_id, UserSessionModel.is_active.is_(True))
            .order_by(UserSessionModel.created_at.asc(), UserSessionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyAuthAttemptRepository(AuthAttemptRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: AuthAttemptRecord) -> AuthAttemptRecord:
        model = AuthAttemptModel(
            email=record.email,
            ip_address=record.ip_address,
            success=record.success,
            failure_reason=record.failure_reason,
            user_agent=record.user_agent,
            attempted_at=record.attempted_at,
        )
        self.session.add(model)
        await self.session.flush()
        record.id = model.id
        return record

    async def count_failures_since(self, email: str, ip_address: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(AuthAttemptModel).where(
                AuthAttemptModel.email == email,
                AuthAttemptModel.ip_address == ip_address,
                AuthAttemptModel.success.is_(False),
                AuthAttemptModel.attempted_at >= since,
            )
        )
        return int(result.scalar() or 0)


class SQLAlchemyAccountLockoutRepository(AccountLockoutRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: AccountLockoutModel) -> AccountLockout:
        return AccountLockout(
            id=model.id,
            email=model.email,
            ip_address=model.ip_address,
            locked_until=_utc(model.locked_until),
            trigger_count=model.trigger_count,
            created_at=_utc(model.created_at),
            cleared_at=_utc(model.cleared_at),
        )

    async def upsert(self, lockout: AccountLockout) -> AccountLockout:
        """同一键只保留一条未解除的锁定记录"""
        result = await self.session.execute(
            select(AccountLockoutModel).where(
                AccountLockoutModel.email == lockout.email,
                AccountLockoutModel.ip_address == lockout.ip_address,
                AccountLockoutModel.cleared_at.is_(None),
            )
        )
        model = result.scalars().first()
        if model is None:
            model = AccountLockoutModel(
                email=lockout.email,
                ip_address=lockout.ip_address,
                created_at=lockout.created_at,
            )
            self.session.add(model)
        model.locked_until = lockout.locked_until
        model.trigger_count = lockout.trigger_count
        await self.session.flush()
        lockout.id = model.id
        return lockout

    async def get_active(self, email: str, ip_address: str, now: datetime) -> Optional[AccountLockout]:
        result = await self.session.execute(
            select(AccountLockoutModel)
            .where(
                AccountLockoutModel.email == email,
                AccountLockoutModel.ip_address == ip_address,
                AccountLockoutModel.cleared_at.is_(None),
                AccountLockoutModel.locked_until > now,
            )
            .order_by(AccountLockoutModel.locked_until.desc())
        )
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def clear(self, email: str, ip_address: str, now: datetime) -> int:
        """标记为已解除；返回解除的有效锁定数"""
        result = await self.session.execute(
            update(AccountLockoutModel)
            .where(
                AccountLockoutModel.email == email,
                AccountLockoutModel.ip_address == ip_address,
                AccountLockoutModel.cleared_at.is_(None),
                AccountLockoutModel.locked_until > now,
            )
            .values(cleared_at=now)
        )
        return int(result.rowcount or 0)


class SQLAlchemySecurityEventRepository(SecurityEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: SecurityEventModel) -> SecurityEvent:
        return SecurityEvent(
            event_id=model.event_id,
            event_type=SecurityEventType(model.event_type),
            severity=Severity(model.severity),
            description=model.description,
            actor=SecurityActor(
                user_id=model.user_id,
                email=model.email,
                ip_address=model.ip_address,
                user_agent=model.user_agent,
            ),
            metadata=dict(model.event_metadata or {}),
            occurred_at=_utc(model.occurred_at),
        )

    async def add(self, event: SecurityEvent) -> SecurityEvent:
        self.session.add(
            SecurityEventModel(
                event_id=event.event_id,
                event_type=event.event_type.value,
                severity=event.severity.value,
                description=event.description,
                user_id=event.actor.user_id,
                email=event.actor.email,
                ip_address=event.actor.ip_address,
                user_agent=event.actor.user_agent,
                event_metadata=event.metadata,
                occurred_at=event.occurred_at,
            )
        )
        await self.session.flush()
        return event

    async def list_recent(
        self,
        limit: int = 50,
        event_type: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> list[SecurityEvent]:
        query = select(SecurityEventModel)
        if event_type is not None:
            query = query.where(SecurityEventModel.event_type == event_type)
        if user_id is not None:
            query = query.where(SecurityEventModel.user_id == user_id)
        query = query.order_by(SecurityEventModel.occurred_at.desc(), SecurityEventModel.id.desc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]
