"""
认证API路由 - 注册、登录、刷新与登出
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm

from api.dependencies import get_auth_service, get_client_context, get_current_principal
from application.dto import (
    AuthResponseDTO,
    MessageDTO,
    RefreshTokenDTO,
    SignInDTO,
    SignOutDTO,
    SignUpDTO,
    TokenPairDTO,
    UserResponseDTO,
)
from application.services.auth_service import AuthOrchestrator, AuthResult, Principal
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/auth",
    tags=["认证"]
)


def _auth_response(result: AuthResult) -> AuthResponseDTO:
    return AuthResponseDTO(
        tokens=TokenPairDTO.model_validate(result.tokens, from_attributes=True),
        user=UserResponseDTO.model_validate(result.user),
    )


@router.post("/signup", summary="用户注册", response_model=ApiResponse[AuthResponseDTO])
async def sign_up(
    request: Request,
    body: SignUpDTO,
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """
    注册新用户并直接登录

    - **email**: 邮箱地址
    - **password**: 密码（至少8位，包含大小写字母、数字与特殊字符）
    - **full_name**: 全名（可选）

    所有校验错误一次性返回在 ``error.details.errors`` 中。
    """
    ip, user_agent = get_client_context(request)
    result = await service.sign_up(body.email, body.password, body.full_name, ip, user_agent)
    if not result.ok:
        raise result.error.to_exception()
    return success_response(data=_auth_response(result.value), message="Account created")


@router.post("/signin", summary="用户登录", response_model=ApiResponse[AuthResponseDTO])
async def sign_in(
    request: Request,
    body: SignInDTO,
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """
    邮箱 + 密码登录

    依次经过限流、锁定检查、凭证校验、欺诈评分，成功后签发令牌对并创建会话。
    失败消息保持笼统，不区分“用户不存在”和“密码错误”。
    """
    ip, user_agent = get_client_context(request)
    result = await service.sign_in(body.email, body.password, ip, user_agent)
    if not result.ok:
        raise result.error.to_exception()
    return success_response(data=_auth_response(result.value), message="Signed in")


@router.post("/token", summary="OAuth2 密码模式登录", response_model=TokenPairDTO)
async def token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """供 Swagger UI 授权使用，username 填邮箱；返回扁平结构，符合 OAuth2 密码模式的期望"""
    ip, user_agent = get_client_context(request)
    result = await service.sign_in(form_data.username, form_data.password, ip, user_agent)
    if not result.ok:
        raise result.error.to_exception()
    return TokenPairDTO.model_validate(result.value.tokens, from_attributes=True)


@router.post("/refresh", summary="刷新令牌", response_model=ApiResponse[TokenPairDTO])
async def refresh(
    request: Request,
    body: RefreshTokenDTO,
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """
    使用刷新令牌换取新的令牌对

    刷新令牌轮转：旧刷新令牌立即撤销，会话绑定到新令牌。
    """
    ip, user_agent = get_client_context(request)
    result = await service.refresh(body.refresh_token, ip, user_agent)
    if not result.ok:
        raise result.error.to_exception()
    return success_response(
        data=TokenPairDTO.model_validate(result.value, from_attributes=True),
        message="Token refreshed",
    )


@router.post("/signout", summary="登出", response_model=ApiResponse[MessageDTO])
async def sign_out(
    request: Request,
    body: Optional[SignOutDTO] = None,
    principal: Principal = Depends(get_current_principal),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """撤销当前访问令牌（以及可选的刷新令牌），并结束会话"""
    ip, user_agent = get_client_context(request)
    refresh_token = body.refresh_token if body else None
    result = await service.sign_out(principal.access_token, refresh_token, ip, user_agent)
    if not result.ok:
        raise result.error.to_exception()
    return success_response(data=MessageDTO(message="Signed out"), message="Signed out")
