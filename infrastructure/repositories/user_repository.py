"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import UserAlreadyExistsException, UserNotFoundException
from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel
from shared.clock import ensure_utc


logger = get_logger(__name__)

_MUTABLE_FIELDS = ("email", "full_name", "hashed_password", "role", "is_active", "last_login")


def _utc(value):
    return ensure_utc(value) if value is not None else None


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现；邮箱唯一约束冲突转换为 UserAlreadyExistsException"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            email=model.email,
            full_name=model.full_name,
            hashed_password=model.hashed_password,
            role=model.role,
            is_active=model.is_active,
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
            last_login=_utc(model.last_login),
        )

    async def _one(self, *criteria) -> Optional[UserModel]:
        result = await self.session.execute(select(UserModel).where(*criteria))
        return result.scalar_one_or_none()

    async def _flush(self, email: str, event: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:
            if "email" in str(e).lower():
                logger.warning(event, field="email", email=email)
                raise UserAlreadyExistsException(email) from e
            raise

    async def create(self, user: User) -> User:
        model = UserModel(
            email=user.email,
            full_name=user.full_name,
            hashed_password=user.hashed_password,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login=user.last_login,
        )
        self.session.add(model)
        await self._flush(user.email, "create_user_conflict")
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, user_id: int) -> Optional[User]:
        model = await self._one(UserModel.id == user_id)
        return self._to_entity(model) if model else None

    async def get_by_email(self, email: str) -> Optional[User]:
        model = await self._one(UserModel.email == email)
        return self._to_entity(model) if model else None

    async def update(self, user: User) -> User:
        model = await self._one(UserModel.id == user.id)
        if not model:
            raise UserNotFoundException(str(user.id))

        for field in _MUTABLE_FIELDS:
            setattr(model, field, getattr(user, field))
        if user.updated_at is not None:
            model.updated_at = user.updated_at

        await self._flush(user.email, "update_user_conflict")
        await self.session.refresh(model)
        return self._to_entity(model)

    async def exists_by_email(self, email: str) -> bool:
        result = await self.session.execute(select(exists().where(UserModel.email == email)))
        return bool(result.scalar())
