"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
面向客户端的认证类消息保持笼统，避免泄露失败原因；完整细节写入安全事件。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


AUTH_FAILED_MESSAGE = "Authentication failed. Please check your credentials."
AUTH_LOCKED_MESSAGE = (
    "Account temporarily locked due to multiple failed attempts. Please try again later."
)
RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."
FRAUD_BLOCKED_MESSAGE = "Request blocked for security reasons."
INTERNAL_ERROR_MESSAGE = "An internal error occurred. Please try again later."


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class ValidationException(BusinessException):
    """输入校验失败（400），errors 会一次性全部返回"""

    def __init__(
        self,
        message: str = "Invalid input",
        *,
        errors: Optional[list[str]] = None,
        field: Optional[str] = None,
        code: int = BusinessCode.PARAM_VALIDATION_ERROR,
    ):
        self.errors = list(errors or [])
        super().__init__(
            code=code,
            message=message,
            error_type="ValidationError",
            details={"errors": self.errors} if self.errors else None,
            field=field,
        )


class AuthenticationException(BusinessException):
    def __init__(self, message: str = AUTH_FAILED_MESSAGE):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="AuthenticationError",
        )


class AuthorizationException(BusinessException):
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="AuthorizationError",
        )


class FraudBlockedException(BusinessException):
    def __init__(self, message: str = FRAUD_BLOCKED_MESSAGE):
        super().__init__(
            code=BusinessCode.FRAUD_BLOCKED,
            message=message,
            error_type="FraudBlocked",
        )


class AccountLockedException(BusinessException):
    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(
            code=BusinessCode.ACCOUNT_LOCKED,
            message=AUTH_LOCKED_MESSAGE,
            error_type="AccountLocked",
            details={"retry_after": retry_after} if retry_after else None,
        )


class RateLimitedException(BusinessException):
    """限流异常"""

    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(
            code=BusinessCode.TOO_MANY_REQUESTS,
            message=RATE_LIMITED_MESSAGE,
            error_type="RateLimit",
            details={"retry_after": retry_after} if retry_after else None,
        )


class UserAlreadyExistsException(BusinessException):
    def __init__(self, email: str):
        super().__init__(
            code=BusinessCode.USER_ALREADY_EXISTS,
            message="Email already registered",
            error_type="UserAlreadyExists",
            field="email",
        )
        self.email = email


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="UserNotFound",
            details={"user_id": user_id} if user_id else None,
        )


class NotFoundException(BusinessException):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=message,
            error_type="NotFound",
        )


class InternalException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.SYSTEM_ERROR,
            message=INTERNAL_ERROR_MESSAGE,
            error_type="SystemError",
        )


class StoreUnavailableError(Exception):
    """外部存储（Redis/数据库）不可用，属于非预期故障，交由全局 500 处理"""

    def __init__(self, store: str, operation: str, cause: Optional[BaseException] = None):
        self.store = store
        self.operation = operation
        self.cause = cause
        super().__init__(f"{store} unavailable during {operation}")
