"""
API依赖项 - 认证和授权
"""
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer, HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

import structlog

from api.middleware.request_id import resolve_client_ip
from application.services.auth_service import AuthOrchestrator, Principal
from application.services.rate_limiter import RateLimitDecision
from domain.common.exceptions import AuthenticationException, RateLimitedException
from domain.security.events import SecurityActor, SecurityEventType, Severity
from infrastructure.container import Container

# OAuth2 password bearer for Swagger UI
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/token",
    scheme_name="OAuth2",
    description="Sign in with email and password to get token",
    auto_error=False,
)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_auth_service(container: Container = Depends(get_container)) -> AuthOrchestrator:
    return container.auth


def get_client_context(request: Request) -> tuple[str, Optional[str]]:
    """(客户端IP, User-Agent)"""
    return resolve_client_ip(request), request.headers.get("User-Agent")


async def get_token(
    oauth2_token: Optional[str] = Depends(oauth2_scheme),
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> str:
    """从OAuth2或Bearer token中提取token"""
    # 优先使用OAuth2 token (from Swagger UI)
    if oauth2_token:
        return oauth2_token

    # 然后尝试Bearer token (from direct API calls)
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials

    raise AuthenticationException("Authentication required")


async def get_current_principal(
    request: Request,
    token: str = Depends(get_token),
    service: AuthOrchestrator = Depends(get_auth_service),
) -> Principal:
    """校验访问令牌并返回当前调用方（会话同时滑动续期）"""
    ip, user_agent = get_client_context(request)
    result = await service.authenticate(token, ip, user_agent)
    if not result.ok:
        raise result.error.to_exception()
    principal = result.value
    structlog.contextvars.bind_contextvars(user_id=principal.user_id)
    return principal


def rate_limit_dependency(endpoint_class: str):
    """
    按端点类别限流的路由依赖（如支付类路由使用 ``rate_limit_dependency("payment")``）

    超限时写入 rate_limit_exceeded 事件并抛出 RateLimitedException（429 + Retry-After）。
    """

    async def _check(request: Request, container: Container = Depends(get_container)) -> RateLimitDecision:
        ip, user_agent = get_client_context(request)
        decision = await container.rate_limiter.check(endpoint_class, ip)
        if not decision.allowed:
            await container.events.log(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                Severity.MEDIUM,
                f"{endpoint_class} rate limit exceeded",
                SecurityActor(ip_address=ip, user_agent=user_agent),
                {"endpoint_class": endpoint_class, "path": request.url.path, "retry_after": decision.retry_after_seconds},
            )
            raise RateLimitedException(retry_after=decision.retry_after_seconds)
        return decision

    return _check
