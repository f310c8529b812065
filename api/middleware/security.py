"""
安全中间件

- SecurityHeadersMiddleware: 统一添加安全响应头
- SecurityMonitorMiddleware: 识别可疑请求（路径穿越、XSS、SQL 注入特征）并记录安全事件，不拦截
- RateLimitMiddleware: /api/ 路径按客户端IP做通用限流（api 类别）
"""
import re
from urllib.parse import unquote

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from api.middleware.request_id import resolve_client_ip
from application.services.rate_limiter import API
from core.exceptions import business_exception_response
from core.logging_config import get_logger
from domain.common.exceptions import RateLimitedException
from domain.security.events import SecurityActor, SecurityEventType, Severity


logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    CONTENT_SECURITY_POLICY = (
        "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; connect-src 'self'; frame-ancestors 'none'; "
        "base-uri 'self'; form-action 'self'"
    )
    # Swagger UI 需要从 CDN 加载脚本
    DOCS_PATHS = {"/docs", "/redoc", "/docs/oauth2-redirect"}

    def __init__(self, app: ASGIApp, *, enable_hsts: bool = True):
        super().__init__(app)
        self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        if request.url.path not in self.DOCS_PATHS:
            response.headers["Content-Security-Policy"] = self.CONTENT_SECURITY_POLICY
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


SUSPICIOUS_PATTERNS = (
    ("path_traversal", re.compile(r"\.\.")),
    ("script_injection", re.compile(r"<script", re.IGNORECASE)),
    ("sql_injection", re.compile(r"union.*select", re.IGNORECASE)),
    ("javascript_protocol", re.compile(r"javascript:", re.IGNORECASE)),
    ("eval_call", re.compile(r"eval\(", re.IGNORECASE)),
    ("exec_call", re.compile(r"exec\(", re.IGNORECASE)),
)


def detect_suspicious(target: str) -> list[str]:
    """返回命中的可疑特征名"""
    return [name for name, pattern in SUSPICIOUS_PATTERNS if pattern.search(target)]


class SecurityMonitorMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        raw_path = request.scope.get("raw_path") or b""
        target = " ".join(
            (
                request.url.path,
                unquote(raw_path.decode("latin-1")),
                unquote(request.url.query or ""),
            )
        )
        matched = detect_suspicious(target)
        if matched:
            client_ip = resolve_client_ip(request)
            await request.app.state.container.events.log(
                SecurityEventType.SUSPICIOUS_REQUEST,
                Severity.MEDIUM,
                "Suspicious request pattern detected",
                SecurityActor(ip_address=client_ip, user_agent=request.headers.get("User-Agent")),
                {"patterns": matched, "path": request.url.path, "method": request.method},
            )
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(self, app: ASGIApp, *, path_prefix: str = "/api/"):
        super().__init__(app)
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix) or request.method == "OPTIONS":
            return await call_next(request)

        container = request.app.state.container
        client_ip = resolve_client_ip(request)
        decision = await container.rate_limiter.check(API, client_ip)
        if not decision.allowed:
            await container.events.log(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                Severity.MEDIUM,
                "API rate limit exceeded",
                SecurityActor(ip_address=client_ip, user_agent=request.headers.get("User-Agent")),
                {"endpoint_class": API, "path": request.url.path, "retry_after": decision.retry_after_seconds},
            )
            response = business_exception_response(
                request, RateLimitedException(retry_after=decision.retry_after_seconds)
            )
        else:
            response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
