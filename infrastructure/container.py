"""
组合根 - 按配置装配存储、适配器与应用服务

配置了 ``redis.url`` 时计数器与撤销列表使用 Redis，否则使用进程内存储；
应用启动/关闭由 ``startup`` / ``shutdown`` 统一管理。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from application.ports.counter_store import CounterStorePort
from application.ports.notification import NotificationPort
from application.ports.revocation_store import RevocationStorePort
from application.services.auth_service import AuthOrchestrator
from application.services.fraud_service import FraudDetectionService
from application.services.fraud_service import policy_from_settings as fraud_policy
from application.services.lockout_service import AccountLockoutTracker
from application.services.lockout_service import policy_from_settings as lockout_policy
from application.services.password_leak import PasswordLeakChecker
from application.services.rate_limiter import RateLimiter
from application.services.security_event_service import SecurityEventLogger
from application.services.session_service import SessionManager
from application.services.token_service import TokenService
from core.config import Settings
from core.logging_config import get_logger
from domain.security.fraud import FraudRiskScorer
from infrastructure.adapters.memory_stores import InMemoryCounterStore, InMemoryRevocationStore
from infrastructure.adapters.redis_stores import RedisCounterStore, RedisRevocationStore
from infrastructure.database import Database, build_database
from infrastructure.external.api_clients import (
    EmailNotificationClient,
    NullNotifier,
    PwnedPasswordsClient,
)
from infrastructure.external.cache import RedisClient, create_redis_client
from infrastructure.unit_of_work import uow_factory as make_uow_factory
from shared.clock import Clock, utc_now


logger = get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    clock: Clock
    database: Database
    uow_factory: Callable[..., Any]
    counter_store: CounterStorePort
    revocation_store: RevocationStorePort
    tokens: TokenService
    rate_limiter: RateLimiter
    lockout: AccountLockoutTracker
    fraud: FraudDetectionService
    sessions: SessionManager
    events: SecurityEventLogger
    auth: AuthOrchestrator
    notifier: NotificationPort
    redis: Optional[RedisClient] = None
    http_clients: list = field(default_factory=list)

    async def startup(self) -> None:
        await self.database.create_tables()
        logger.info(
            "container_started",
            store="redis" if self.redis is not None else "memory",
            notification=self.settings.notification.enabled,
            breach_check=self.settings.breach_check.enabled,
        )

    async def shutdown(self) -> None:
        await self.auth.drain()
        for client in self.http_clients:
            await client.close()
        if self.redis is not None:
            await self.redis.close()
        await self.database.dispose()
        logger.info("container_stopped")

    async def health(self) -> dict[str, bool]:
        return {
            "database": await self.database.health_check(),
            "counter_store": await self.counter_store.health_check(),
        }


def build_container(
    settings: Settings,
    clock: Clock = utc_now,
    *,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Container:
    """按配置装配全部组件；``http_transport`` 供测试注入 httpx.MockTransport"""
    database = build_database(settings.database)
    uow_factory = make_uow_factory(database.session_factory)

    redis: Optional[RedisClient] = None
    if settings.redis.url:
        redis = create_redis_client(settings.redis)
        counter_store: CounterStorePort = RedisCounterStore(redis)
        revocation_store: RevocationStorePort = RedisRevocationStore(redis)
    else:
        logger.warning("redis_not_configured", message="Using in-process counter and revocation stores")
        counter_store = InMemoryCounterStore(clock)
        revocation_store = InMemoryRevocationStore(clock)

    http_clients = []
    if settings.notification.enabled:
        notifier: NotificationPort = EmailNotificationClient(settings.notification, transport=http_transport)
        http_clients.append(notifier)
    else:
        notifier = NullNotifier()

    breach_client = None
    if settings.breach_check.enabled:
        breach_client = PwnedPasswordsClient(settings.breach_check, transport=http_transport)
        http_clients.append(breach_client)

    tokens = TokenService(settings.tokens, revocation_store, clock)
    rate_limiter = RateLimiter(counter_store, settings.rate_limit)
    lockout = AccountLockoutTracker(uow_factory, counter_store, lockout_policy(settings.lockout), clock)
    fraud = FraudDetectionService(
        FraudRiskScorer(fraud_policy(settings.fraud)), counter_store, settings.fraud, clock
    )
    sessions = SessionManager(uow_factory, settings.session, clock)
    events = SecurityEventLogger(uow_factory, clock)
    auth = AuthOrchestrator(
        uow_factory=uow_factory,
        tokens=tokens,
        rate_limiter=rate_limiter,
        lockout=lockout,
        fraud=fraud,
        sessions=sessions,
        events=events,
        leak_checker=PasswordLeakChecker(breach_client, enabled=settings.breach_check.enabled),
        notifier=notifier,
        clock=clock,
    )
    return Container(
        settings=settings,
        clock=clock,
        database=database,
        uow_factory=uow_factory,
        counter_store=counter_store,
        revocation_store=revocation_store,
        tokens=tokens,
        rate_limiter=rate_limiter,
        lockout=lockout,
        fraud=fraud,
        sessions=sessions,
        events=events,
        auth=auth,
        notifier=notifier,
        redis=redis,
        http_clients=http_clients,
    )
