"""
安全API路由 - 锁定状态、会话管理与审计事件
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_auth_service, get_client_context, get_current_principal
from application.dto import (
    MessageDTO,
    SecurityEventDTO,
    SecurityStatusDTO,
    SessionDTO,
    UnlockRequestDTO,
)
from application.services.auth_service import AuthOrchestrator, Principal
from core.response import Response as ApiResponse, success_response
from domain.security.events import SecurityEvent

router = APIRouter(
    prefix="/security",
    tags=["安全"]
)


def _event_dto(event: SecurityEvent) -> SecurityEventDTO:
    return SecurityEventDTO(
        event_id=event.event_id,
        event_type=event.event_type.value,
        severity=event.severity.value,
        description=event.description,
        user_id=event.actor.user_id,
        email=event.actor.email,
        ip_address=event.actor.ip_address,
        metadata=event.metadata,
        occurred_at=event.occurred_at,
    )


@router.get("/status", summary="查询账户安全状态", response_model=ApiResponse[SecurityStatusDTO])
async def security_status(
    request: Request,
    email: str = Query(..., max_length=255, description="邮箱地址"),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """
    查询当前客户端IP下该邮箱的锁定状态

    - **locked**: 是否处于锁定期
    - **remaining_attempts**: 触发锁定前剩余的失败次数
    - **rate_limit_remaining**: 登录限流窗口内剩余额度
    """
    ip, _ = get_client_context(request)
    status = await service.security_status(email, ip)
    return success_response(data=SecurityStatusDTO.model_validate(status))


@router.get("/sessions", summary="获取活跃会话列表", response_model=ApiResponse[list[SessionDTO]])
async def list_sessions(
    principal: Principal = Depends(get_current_principal),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """获取当前用户的所有活跃登录会话（设备、IP、最近活动时间）"""
    sessions = await service.list_sessions(principal)
    items = []
    for session in sessions:
        dto = SessionDTO.model_validate(session)
        dto.current = session.session_id == principal.session_id
        items.append(dto)
    return success_response(data=items, message=f"{len(items)} active sessions")


@router.delete("/sessions/{session_id}", summary="撤销会话", response_model=ApiResponse[MessageDTO])
async def revoke_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """结束当前用户名下的指定会话；会话不存在或不属于当前用户时返回 404"""
    result = await service.revoke_session(principal, session_id)
    if not result.ok:
        raise result.error.to_exception()
    return success_response(data=MessageDTO(message="Session revoked"), message="Session revoked")


@router.post("/unlock", summary="解锁账户", response_model=ApiResponse[MessageDTO])
async def unlock(
    body: UnlockRequestDTO,
    principal: Principal = Depends(get_current_principal),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """解除邮箱 + IP 维度的锁定（需要管理员权限）"""
    result = await service.unlock(body.email, body.ip_address, principal)
    if not result.ok:
        raise result.error.to_exception()
    message = "Account unlocked" if result.value else "Account was not locked"
    return success_response(data=MessageDTO(message=message), message=message)


@router.get("/events", summary="最近的安全事件", response_model=ApiResponse[list[SecurityEventDTO]])
async def recent_events(
    limit: int = Query(50, ge=1, le=500),
    event_type: Optional[str] = Query(None, description="按事件类型筛选"),
    user_id: Optional[int] = Query(None, description="按用户筛选"),
    principal: Principal = Depends(get_current_principal),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """按时间倒序返回安全事件（需要管理员权限）"""
    result = await service.recent_events(principal, limit=limit, event_type=event_type, user_id=user_id)
    if not result.ok:
        raise result.error.to_exception()
    return success_response(data=[_event_dto(e) for e in result.value])
