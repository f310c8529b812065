"""
用户领域实体 - 包含核心业务规则
"""
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass

from domain.security.credentials import validate_email


ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class User:
    """用户实体 - 领域核心"""

    id: Optional[int]
    email: str
    hashed_password: str
    full_name: Optional[str] = None
    role: str = ROLE_USER
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    def __post_init__(self):
        """初始化后的业务规则验证"""
        self.email = normalize_email(self.email)
        if not validate_email(self.email):
            raise ValueError(f"无效的邮箱格式: {self.email}")
        if self.role not in ROLES:
            raise ValueError(f"未知角色: {self.role}")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def record_login(self, now: Optional[datetime] = None) -> None:
        """业务规则：记录登录时间"""
        self.last_login = now or datetime.now(timezone.utc)

    def change_role(self, role: str) -> None:
        if role not in ROLES:
            raise ValueError(f"未知角色: {role}")
        self.role = role
        self.updated_at = datetime.now(timezone.utc)
