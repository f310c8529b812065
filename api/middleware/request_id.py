"""
Request ID 中间件
用于生成或透传追踪ID，解析客户端IP，并通过contextvars传递给日志系统
"""
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog


# 定义context变量，用于在请求生命周期内共享request_id
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    功能：
    1. 从请求头获取或生成新的request_id
    2. 解析客户端IP（限流、锁定、欺诈评分都以此为准）
    3. 将request_id存入contextvars，供日志系统使用
    4. 在响应头中返回request_id
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME)
        if not request_id:
            request_id = str(uuid.uuid4())

        client_ip = resolve_client_ip(request)

        # 设置到request.state以便在应用内部访问
        request.state.request_id = request_id
        request.state.client_ip = client_ip

        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        # 绑定到structlog上下文
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def resolve_client_ip(request: Request) -> str:
    """
    获取客户端IP

    只认连接地址。可信代理的 X-Forwarded-For 已由 ProxyHeadersMiddleware
    改写进连接地址，非可信来源带的转发头一律忽略。
    """
    cached = getattr(request.state, "client_ip", None)
    if cached:
        return cached
    client_ip = request.client.host if request.client else None
    return client_ip or "unknown"


def get_request_id() -> Optional[str]:
    """当前请求的request_id，不在请求上下文中则返回None"""
    return request_id_var.get()
