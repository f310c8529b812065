"""
配置文件 - 项目配置管理

配置对象在进程入口处通过 ``load_settings()`` 构建一次，
再经由 ``create_app(settings)`` 注入到各组件，不使用模块级单例。
"""
import json
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_SECRET_LENGTH = 32


class TokenSettings(BaseModel):
    # 访问令牌与刷新令牌使用不同密钥与 audience，互相不可重放
    access_secret: Optional[str] = None
    refresh_secret: Optional[str] = None
    algorithm: str = "HS256"
    issuer: str = "anagha-safaar"
    access_audience: str = "anagha-safaar-users"
    refresh_audience: str = "anagha-safaar-refresh"
    access_ttl_minutes: int = Field(default=15, gt=0)
    refresh_ttl_days: int = Field(default=7, gt=0)


class RateLimitRule(BaseModel):
    window_seconds: int = Field(gt=0)
    max_requests: int = Field(gt=0)

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000


class RateLimitSettings(BaseModel):
    auth: RateLimitRule = Field(default_factory=lambda: RateLimitRule(window_seconds=900, max_requests=10))
    api: RateLimitRule = Field(default_factory=lambda: RateLimitRule(window_seconds=900, max_requests=100))
    payment: RateLimitRule = Field(default_factory=lambda: RateLimitRule(window_seconds=60, max_requests=3))
    signup: RateLimitRule = Field(default_factory=lambda: RateLimitRule(window_seconds=3600, max_requests=5))

    def rule_for(self, endpoint_class: str) -> RateLimitRule:
        rule = getattr(self, endpoint_class, None)
        if not isinstance(rule, RateLimitRule):
            raise KeyError(f"unknown rate limit class: {endpoint_class}")
        return rule


class LockoutSettings(BaseModel):
    max_attempts: int = Field(default=5, gt=0)
    window_minutes: int = Field(default=15, gt=0)
    lockout_minutes: int = Field(default=30, gt=0)


class FraudSettings(BaseModel):
    risky_threshold: int = 50
    block_threshold: int = 80
    velocity_threshold: int = 10
    velocity_window_seconds: int = 60
    rapid_attempt_seconds: float = 2.0
    suspicious_ips: list[str] = Field(default_factory=lambda: ["127.0.0.1", "0.0.0.0"])
    bot_user_agent_pattern: str = r"bot|crawler|spider|scraper|curl|wget"
    flag_ttl_hours: int = 24
    signal_timeout_seconds: float = 0.5

    @model_validator(mode="after")
    def _validate_thresholds(self):
        if not 0 <= self.risky_threshold <= self.block_threshold <= 100:
            raise ValueError("fraud 阈值需满足 0 <= risky_threshold <= block_threshold <= 100")
        return self


class SessionSettings(BaseModel):
    idle_minutes: int = Field(default=30, gt=0)
    absolute_hours: int = Field(default=24, gt=0)
    max_concurrent: int = Field(default=3, gt=0)


class RedisSettings(BaseModel):
    url: Optional[str] = None
    max_connections: int = 10
    namespace: str = "auth-guard"


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./auth_guard.db"
    echo: bool = False


class NotificationSettings(BaseModel):
    enabled: bool = False
    base_url: str = "http://localhost:8025"
    api_key: Optional[str] = None
    sender: str = "security@anagha-safaar.example"
    timeout_seconds: float = 5.0


class BreachCheckSettings(BaseModel):
    enabled: bool = False
    base_url: str = "https://api.pwnedpasswords.com"
    timeout_seconds: float = 2.0


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = "Travel Auth Guard"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # 分组配置：嵌套模型，环境变量使用 "__" 分隔，如 TOKENS__ACCESS_SECRET
    tokens: TokenSettings = Field(default_factory=TokenSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    lockout: LockoutSettings = Field(default_factory=LockoutSettings)
    fraud: FraudSettings = Field(default_factory=FraudSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    breach_check: BreachCheckSettings = Field(default_factory=BreachCheckSettings)

    # 可信代理：只有来自这些地址的连接才会采用 X-Forwarded-For，"*" 表示全部信任
    FORWARDED_ALLOW_IPS: str = "127.0.0.1"

    # CORS配置
    CORS_ORIGINS: list = Field(default=["http://localhost:3000", "http://localhost:8000"])

    # 日志/请求体记录配置
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = True
    LOG_REQUEST_BODY_MAX_BYTES: int = 2048

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _validate_token_secrets(self):
        # 两个签名密钥都必须显式配置，长度不少于 32，且不能相同
        access = self.tokens.access_secret
        refresh = self.tokens.refresh_secret
        if not access or not refresh:
            raise ValueError(
                "令牌密钥未配置。请设置 TOKENS__ACCESS_SECRET 与 TOKENS__REFRESH_SECRET"
            )
        if len(access) < MIN_SECRET_LENGTH or len(refresh) < MIN_SECRET_LENGTH:
            raise ValueError(f"令牌密钥长度至少 {MIN_SECRET_LENGTH} 个字符")
        if access == refresh:
            raise ValueError("访问令牌与刷新令牌必须使用不同的密钥")
        return self

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


def load_settings(**overrides) -> Settings:
    """从环境变量 / .env 构建配置；overrides 用于测试或脚本显式覆盖"""
    return Settings(**overrides)
