"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .session import UserSessionModel
from .auth_attempt import AuthAttemptModel, AccountLockoutModel
from .security_event import SecurityEventModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "UserSessionModel",
    "AuthAttemptModel",
    "AccountLockoutModel",
    "SecurityEventModel",
]
