"""
安全事件记录 - 只追加的审计轨迹

写入失败只记录本地日志，从不向调用方抛出：认证可用性不依赖审计存储的可用性。
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.security.events import SecurityActor, SecurityEvent, SecurityEventType, Severity
from shared.clock import Clock, utc_now


logger = get_logger(__name__)


class SecurityEventLogger:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], clock: Clock = utc_now):
        self._uow_factory = uow_factory
        self._clock = clock

    async def log(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        description: str,
        actor: Optional[SecurityActor] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        event = SecurityEvent(
            event_type=event_type,
            severity=severity,
            description=description,
            actor=actor or SecurityActor(),
            metadata=dict(metadata or {}),
            occurred_at=self._clock(),
        )
        try:
            async with self._uow_factory() as uow:
                await uow.security_event_repository.add(event)
        except Exception as exc:
            logger.error(
                "security_event_write_failed",
                event_type=event_type.value,
                severity=severity.value,
                description=description,
                error=str(exc),
            )
            return None

        log = logger.warning if severity in (Severity.HIGH, Severity.CRITICAL) else logger.info
        log(
            "security_event",
            event_id=event.event_id,
            event_type=event_type.value,
            severity=severity.value,
            user_id=event.actor.user_id,
            ip=event.actor.ip_address,
        )
        return event.event_id

    async def list_recent(
        self,
        limit: int = 50,
        event_type: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> list[SecurityEvent]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.security_event_repository.list_recent(
                limit=limit, event_type=event_type, user_id=user_id
            )
