"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from api.middleware import (
    LoggingMiddleware,
    RateLimitMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    SecurityMonitorMiddleware,
)
from api.routes import auth, security, user
from core.config import Settings, load_settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.container import build_container
from shared.clock import Clock, utc_now


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """
    创建应用实例

    Args:
        settings: 配置对象，缺省时从环境变量加载
        clock: 时钟函数，测试中注入可控时钟
    """
    settings = settings or load_settings()
    # 初始化日志：在入口处显式配置，避免模块导入时的副作用
    configure_logging(debug=settings.DEBUG)
    container = build_container(settings, clock or utc_now)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        await container.startup()
        logger.info("database_initialized", url=settings.database.url.split("@")[-1])
        yield
        await container.shutdown()
        logger.info("application_shutdown", message="Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="旅行预订平台的认证与账户安全服务",
    )
    app.state.container = container

    # 添加中间件（注意顺序：后添加的在外层先执行）
    # 6. CORS中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # 5. 通用限流（/api/ 路径）
    app.add_middleware(RateLimitMiddleware)
    # 4. 可疑请求监控（只记录不拦截）
    app.add_middleware(SecurityMonitorMiddleware)
    # 3. 安全响应头
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=not settings.DEBUG)
    # 2. 日志中间件（依赖request_id）
    app.add_middleware(
        LoggingMiddleware,
        debug=settings.DEBUG,
        enable_body_log_default=settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT,
        max_body_log_bytes=settings.LOG_REQUEST_BODY_MAX_BYTES,
    )
    # 1. Request ID中间件（为后续中间件提供request_id与客户端IP）
    app.add_middleware(RequestIDMiddleware)
    # 0. 代理头（最外层）：仅信任 FORWARDED_ALLOW_IPS 中的代理改写客户端地址
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.FORWARDED_ALLOW_IPS)

    # 注册全局异常处理器
    register_exception_handlers(app)

    # 注册路由
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(security.router, prefix="/api/v1")
    app.include_router(user.router, prefix="/api/v1")

    @app.get("/", tags=["Root"])
    async def root():
        """API根路径"""
        return success_response(
            data={
                "name": settings.PROJECT_NAME,
                "version": settings.VERSION,
                "docs": "/docs",
                "redoc": "/redoc"
            },
            message="Welcome"
        )

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """健康检查端点：数据库与计数存储"""
        checks = await request.app.state.container.health()
        healthy = all(checks.values())
        return success_response(
            data={"status": "healthy" if healthy else "degraded", "checks": checks},
            message="OK" if healthy else "Degraded",
        )

    return app


try:
    app = create_app()
except ValidationError as exc:
    # 令牌密钥未配置时不在导入阶段构建应用；测试通过 create_app(settings) 自行构建
    logger.warning("app_not_configured", error=str(exc))
    app = None


if __name__ == "__main__":
    import uvicorn
    if app is None:
        raise SystemExit("TOKENS__ACCESS_SECRET / TOKENS__REFRESH_SECRET must be configured")
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=app.debug,
        log_level="debug" if app.debug else "info"
    )
