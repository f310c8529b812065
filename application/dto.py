"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, Field, model_serializer, ConfigDict
from typing import Optional, Any
from datetime import datetime, timezone

from shared.codes import BusinessCode


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


# 请求体只做形状约束；邮箱格式与密码强度由认证编排统一校验，一次性返回全部错误


class SignUpDTO(DTOBase):
    """注册DTO"""
    email: str = Field(..., max_length=255, description="邮箱地址")
    password: str = Field(..., max_length=128, description="密码")
    full_name: Optional[str] = Field(None, max_length=100, description="全名")


class SignInDTO(DTOBase):
    """登录DTO"""
    email: str = Field(..., max_length=255, description="邮箱地址")
    password: str = Field(..., max_length=128, description="密码")


class RefreshTokenDTO(DTOBase):
    """刷新令牌请求 DTO"""
    refresh_token: str


class SignOutDTO(DTOBase):
    """登出请求 DTO（可选携带刷新令牌一并撤销）"""
    refresh_token: Optional[str] = None


class TokenPairDTO(DTOBase):
    """令牌DTO"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # 秒
    session_id: str


class UserResponseDTO(DTOBase):
    """用户响应DTO"""
    id: int
    email: str
    full_name: Optional[str]
    role: str
    is_active: bool
    created_at: Optional[datetime]
    last_login: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class AuthResponseDTO(DTOBase):
    """注册/登录响应：令牌对 + 用户"""
    tokens: TokenPairDTO
    user: UserResponseDTO


class SessionDTO(DTOBase):
    session_id: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    current: bool = False

    model_config = ConfigDict(from_attributes=True)


class SecurityStatusDTO(DTOBase):
    """安全状态：锁定与剩余额度"""
    email: str
    locked: bool
    locked_until: Optional[datetime]
    retry_after: Optional[int]
    failed_attempts: int
    remaining_attempts: int
    rate_limit_remaining: int

    model_config = ConfigDict(from_attributes=True)


class SecurityEventDTO(DTOBase):
    event_id: str
    event_type: str
    severity: str
    description: str
    user_id: Optional[int]
    email: Optional[str]
    ip_address: Optional[str]
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime


class UnlockRequestDTO(DTOBase):
    """管理员解锁请求"""
    email: str = Field(..., max_length=255)
    ip_address: Optional[str] = Field(None, max_length=64, description="为空时按 unknown 处理")


class MessageDTO(DTOBase):
    """消息响应DTO"""
    message: str
    code: int = BusinessCode.SUCCESS
