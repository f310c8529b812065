"""
自定义异常映射与全局异常处理器
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import traceback
import uuid
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    StoreUnavailableError,
    INTERNAL_ERROR_MESSAGE,
)
from domain.security.events import SecurityActor, SecurityEventType, Severity


HTTP_423_LOCKED = 423

_CODE_TO_STATUS = {
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_400_BAD_REQUEST,

    BusinessCode.USER_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.USER_ALREADY_EXISTS: http_status.HTTP_409_CONFLICT,

    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.ACCOUNT_LOCKED: HTTP_423_LOCKED,
    BusinessCode.FRAUD_BLOCKED: http_status.HTTP_403_FORBIDDEN,

    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,

    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
}


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）。"""
    try:
        return _CODE_TO_STATUS.get(BusinessCode(code), http_status.HTTP_400_BAD_REQUEST)
    except ValueError:
        return http_status.HTTP_400_BAD_REQUEST


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


async def _record_internal_error(request: Request, exc: Exception, request_id: str) -> None:
    """未处理异常记一条 internal_error 安全事件；事件写入本身失败时只记日志"""
    container = getattr(request.app.state, "container", None)
    if container is None:
        return
    metadata = {
        "request_id": request_id,
        "path": request.url.path,
        "method": request.method,
        "error_type": type(exc).__name__,
        "error": str(exc),
    }
    if isinstance(exc, StoreUnavailableError):
        metadata.update(store=exc.store, operation=exc.operation)
    actor = SecurityActor(
        ip_address=getattr(request.state, "client_ip", None)
        or (request.client.host if request.client else None),
        user_agent=request.headers.get("User-Agent"),
    )
    await container.events.log(
        SecurityEventType.INTERNAL_ERROR, Severity.HIGH, "Unhandled server error", actor, metadata
    )


def business_exception_response(request: Request, exc: BusinessException) -> JSONResponse:
    """把业务异常渲染为统一响应（中间件中也会复用）"""
    response = error_response(
        code=exc.code,
        message=exc.message,
        error_type=exc.error_type,
        details=exc.details,
        field=exc.field,
        request_id=_request_id(request),
    )
    status_code = business_code_to_http_status(exc.code)
    headers = {}
    if status_code == http_status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    retry_after = getattr(exc, "retry_after", None)
    if retry_after and status_code in (http_status.HTTP_429_TOO_MANY_REQUESTS, HTTP_423_LOCKED):
        headers["Retry-After"] = str(int(retry_after))
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode='json'),
        headers=headers or None,
    )


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常"""
        return business_exception_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常（统一返回400）"""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        response = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Invalid input: {first_error.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": [e.get("msg") for e in errors]},
            field=field or None,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            content=response.model_dump(mode='json')
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理HTTP异常"""
        code_mapping = {
            401: BusinessCode.UNAUTHORIZED,
            403: BusinessCode.FORBIDDEN,
            404: BusinessCode.NOT_FOUND,
            423: BusinessCode.ACCOUNT_LOCKED,
            429: BusinessCode.TOO_MANY_REQUESTS,
            500: BusinessCode.SYSTEM_ERROR,
            503: BusinessCode.SERVICE_UNAVAILABLE
        }
        code = code_mapping.get(exc.status_code, BusinessCode.SYSTEM_ERROR)

        response = error_response(
            code=code,
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=response.model_dump(mode='json'),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常（含存储不可用），生产环境只返回通用消息"""
        request_id = _request_id(request)

        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message=INTERNAL_ERROR_MESSAGE,
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )

        if isinstance(exc, StoreUnavailableError):
            logger.error(
                "store_unavailable",
                request_id=request_id,
                store=exc.store,
                operation=exc.operation,
                error=str(exc.cause) if exc.cause else None,
            )
        else:
            logger.error(
                "unhandled_exception",
                request_id=request_id,
                error=str(exc),
                exc_info=True,
            )

        await _record_internal_error(request, exc, request_id)

        return JSONResponse(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode='json')
        )
