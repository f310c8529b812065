"""
用户API路由 - FastAPI表现层
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_auth_service, get_current_principal
from application.dto import UserResponseDTO
from application.services.auth_service import AuthOrchestrator, Principal
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/users",
    tags=["用户管理"]
)


@router.get("/me", summary="获取当前用户信息", response_model=ApiResponse[UserResponseDTO])
async def get_current_user_info(
    principal: Principal = Depends(get_current_principal),
    service: AuthOrchestrator = Depends(get_auth_service),
):
    """获取当前登录用户的信息"""
    user = await service.get_user(principal)
    return success_response(data=UserResponseDTO.model_validate(user))
