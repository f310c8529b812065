"""
认证编排服务 - 串联限流、锁定、凭证校验、欺诈评分、令牌签发与会话创建

登录状态机：
    Start → RateLimitChecked → LockoutChecked → CredentialVerified
          → FraudChecked → TokensIssued → SessionCreated → Done

任一状态都可以提前退出为 ``Err(AuthRejection)``；每个退出原因都对应一条
安全事件和一个 HTTP 状态码（见 ``AuthRejection.to_exception``）。
凭证校验失败时总是先记录失败尝试再返回，锁定计数不会被提前返回绕过。
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
import uuid

from application.ports.notification import NotificationPort
from application.services.fraud_service import FraudDetectionService
from application.services.lockout_service import AccountLockoutTracker
from application.services.password_leak import PasswordLeakChecker
from application.services.rate_limiter import AUTH, SIGNUP, RateLimiter, auth_identity
from application.services.security_event_service import SecurityEventLogger
from application.services.session_service import SessionManager
from application.services.token_service import TokenInvalidError, TokenService, hash_token
from core.logging_config import get_logger
from domain.common.exceptions import (
    AccountLockedException,
    AuthenticationException,
    AuthorizationException,
    BusinessException,
    FraudBlockedException,
    NotFoundException,
    RateLimitedException,
    UserAlreadyExistsException,
    ValidationException,
)
from domain.common.result import Err, Ok, Result
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.security.credentials import sanitize, validate_email, validate_password_strength
from domain.security.events import SecurityActor, SecurityEvent, SecurityEventType, Severity
from domain.security.session import END_LOGOUT, END_REVOKED, Session
from domain.user.entity import ROLE_ADMIN, ROLE_USER, User, normalize_email
from domain.user.service import PasswordService
from shared.clock import Clock, utc_now


logger = get_logger(__name__)

ERR_INVALID_EMAIL = "Invalid email format"
ERR_PASSWORD_REQUIRED = "Password is required"
ERR_PASSWORD_LEAKED = (
    "This password has appeared in a data breach. Please choose a different password"
)


class RejectionReason(str, Enum):
    RATE_LIMITED = "rate_limited"
    INVALID_INPUT = "invalid_input"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_CREDENTIALS = "invalid_credentials"
    FRAUD_BLOCKED = "fraud_blocked"
    EMAIL_TAKEN = "email_taken"
    TOKEN_INVALID = "token_invalid"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class AuthRejection:
    reason: RejectionReason
    errors: tuple[str, ...] = ()
    retry_after: Optional[int] = None

    def to_exception(self) -> BusinessException:
        """转换为对外的业务异常（消息保持笼统）"""
        if self.reason is RejectionReason.RATE_LIMITED:
            return RateLimitedException(retry_after=self.retry_after)
        if self.reason is RejectionReason.INVALID_INPUT:
            return ValidationException(errors=list(self.errors))
        if self.reason is RejectionReason.ACCOUNT_LOCKED:
            return AccountLockedException(retry_after=self.retry_after)
        if self.reason is RejectionReason.FRAUD_BLOCKED:
            return FraudBlockedException()
        if self.reason is RejectionReason.EMAIL_TAKEN:
            return UserAlreadyExistsException(email="")
        if self.reason is RejectionReason.FORBIDDEN:
            return AuthorizationException()
        if self.reason is RejectionReason.NOT_FOUND:
            return NotFoundException()
        return AuthenticationException()


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: str
    token_type: str = "bearer"


@dataclass(frozen=True)
class AuthResult:
    user: User
    session: Session
    tokens: TokenPair


@dataclass(frozen=True)
class Principal:
    """已认证的调用方；role 来自存储而不是令牌"""
    user_id: int
    email: str
    role: str
    session_id: str
    access_token: str = field(repr=False)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass(frozen=True)
class SecurityStatus:
    email: str
    locked: bool
    locked_until: Optional[datetime]
    retry_after: Optional[int]
    failed_attempts: int
    remaining_attempts: int
    rate_limit_remaining: int


class AuthOrchestrator:
    """认证编排"""

    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        tokens: TokenService,
        rate_limiter: RateLimiter,
        lockout: AccountLockoutTracker,
        fraud: FraudDetectionService,
        sessions: SessionManager,
        events: SecurityEventLogger,
        leak_checker: PasswordLeakChecker,
        notifier: NotificationPort,
        clock: Clock = utc_now,
    ):
        self._uow_factory = uow_factory
        self._tokens = tokens
        self._rate_limiter = rate_limiter
        self._lockout = lockout
        self._fraud = fraud
        self._sessions = sessions
        self._events = events
        self._leak_checker = leak_checker
        self._notifier = notifier
        self._clock = clock
        self._background: set[asyncio.Task] = set()

    # ---- 登录 ----

    async def sign_in(
        self,
        email: str,
        password: str,
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> Result[AuthResult, AuthRejection]:
        email = normalize_email(email)
        actor = SecurityActor(email=email or None, ip_address=ip, user_agent=user_agent)

        decision = await self._rate_limiter.check(AUTH, auth_identity(ip or "unknown", email))
        if not decision.allowed:
            await self._events.log(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                Severity.MEDIUM,
                "Sign-in rate limit exceeded",
                actor,
                {"endpoint_class": AUTH, "retry_after": decision.retry_after_seconds},
            )
            return Err(AuthRejection(RejectionReason.RATE_LIMITED, retry_after=decision.retry_after_seconds))

        errors = []
        if not validate_email(email):
            errors.append(ERR_INVALID_EMAIL)
        if not password:
            errors.append(ERR_PASSWORD_REQUIRED)
        if errors:
            await self._lockout.record_attempt(email, ip, False, reason="invalid_input", user_agent=user_agent)
            await self._events.log(
                SecurityEventType.LOGIN_FAILED, Severity.LOW, "Sign-in rejected: invalid input", actor,
                {"errors": errors},
            )
            return Err(AuthRejection(RejectionReason.INVALID_INPUT, errors=tuple(errors)))

        status = await self._lockout.is_locked(email, ip)
        if status.locked:
            retry_after = status.retry_after_seconds(self._clock())
            await self._events.log(
                SecurityEventType.LOCKED_ACCOUNT_ACCESS,
                Severity.HIGH,
                "Sign-in attempted on a locked account",
                actor,
                {"locked_until": status.locked_until.isoformat() if status.locked_until else None},
            )
            return Err(AuthRejection(RejectionReason.ACCOUNT_LOCKED, retry_after=retry_after))

        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_email(email)

        failure = None
        if user is None:
            failure = "unknown_user"
        elif not PasswordService.verify_password(password, user.hashed_password):
            failure = "bad_password"
        elif not user.is_active:
            failure = "inactive_user"

        if failure is not None:
            if user is not None:
                actor = SecurityActor(user_id=user.id, email=user.email, ip_address=ip, user_agent=user_agent)
            return await self._reject_credentials(email, ip, user_agent, user, failure, actor)

        actor = SecurityActor(user_id=user.id, email=user.email, ip_address=ip, user_agent=user_agent)
        checked = await self._fraud.assess(auth_identity(ip or "unknown", email), ip, user_agent)
        assessment = checked.value
        fraud_meta = {
            "risk_score": assessment.risk_score,
            "reasons": assessment.reasons,
            "flags": assessment.flags,
            "degraded": checked.degraded,
        }
        if assessment.should_block:
            await self._lockout.record_attempt(email, ip, False, reason="fraud_blocked", user_agent=user_agent)
            await self._events.log(
                SecurityEventType.FRAUD_DETECTED, assessment.severity, "Sign-in blocked by fraud checks",
                actor, fraud_meta,
            )
            return Err(AuthRejection(RejectionReason.FRAUD_BLOCKED))
        if assessment.is_risky:
            await self._events.log(
                SecurityEventType.SUSPICIOUS_LOGIN, Severity.MEDIUM, "Suspicious sign-in allowed",
                actor, fraud_meta,
            )

        result = await self._open_session(user, ip, user_agent)

        user.record_login(self._clock())
        async with self._uow_factory() as uow:
            await uow.user_repository.update(user)

        await self._lockout.record_attempt(email, ip, True, user_agent=user_agent)
        await self._events.log(
            SecurityEventType.LOGIN_SUCCESS, Severity.LOW, "User signed in", actor,
            {"session_id": result.session.session_id, "risk_score": assessment.risk_score},
        )
        return Ok(result)

    async def _reject_credentials(
        self,
        email: str,
        ip: Optional[str],
        user_agent: Optional[str],
        user: Optional[User],
        failure: str,
        actor: SecurityActor,
    ) -> Err[AuthRejection]:
        status = await self._lockout.record_attempt(email, ip, False, reason=failure, user_agent=user_agent)
        await self._events.log(
            SecurityEventType.LOGIN_FAILED,
            Severity.MEDIUM,
            "Sign-in failed: invalid credentials",
            actor,
            {"failure": failure, "failed_attempts": status.failed_attempts},
        )
        if not status.just_locked:
            return Err(AuthRejection(RejectionReason.INVALID_CREDENTIALS))

        await self._events.log(
            SecurityEventType.ACCOUNT_LOCKED,
            Severity.HIGH,
            "Account locked after repeated failed sign-ins",
            actor,
            {
                "failed_attempts": status.failed_attempts,
                "locked_until": status.locked_until.isoformat() if status.locked_until else None,
            },
        )
        if user is not None:
            self._dispatch_email(
                user.email,
                "Your account has been temporarily locked",
                _lockout_notice_html(status.locked_until, ip),
            )
        return Err(
            AuthRejection(
                RejectionReason.ACCOUNT_LOCKED,
                retry_after=status.retry_after_seconds(self._clock()),
            )
        )

    async def _open_session(self, user: User, ip: Optional[str], user_agent: Optional[str]) -> AuthResult:
        session_id = uuid.uuid4().hex
        access_token = self._tokens.issue_access_token(user.id, user.email, user.role, session_id)
        refresh_token = self._tokens.issue_refresh_token(user.id, session_id)
        session = await self._sessions.create_session(
            user.id, refresh_token, ip, user_agent, session_id=session_id
        )
        return AuthResult(
            user=user,
            session=session,
            tokens=TokenPair(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=self._tokens.access_ttl_seconds,
                session_id=session_id,
            ),
        )

    # ---- 注册 ----

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: Optional[str],
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> Result[AuthResult, AuthRejection]:
        email = normalize_email(email)
        actor = SecurityActor(email=email or None, ip_address=ip, user_agent=user_agent)

        decision = await self._rate_limiter.check(SIGNUP, ip or "unknown")
        if not decision.allowed:
            await self._events.log(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                Severity.MEDIUM,
                "Sign-up rate limit exceeded",
                actor,
                {"endpoint_class": SIGNUP, "retry_after": decision.retry_after_seconds},
            )
            return Err(AuthRejection(RejectionReason.RATE_LIMITED, retry_after=decision.retry_after_seconds))

        errors = []
        if not validate_email(email):
            errors.append(ERR_INVALID_EMAIL)
        errors.extend(validate_password_strength(password or "").errors)
        if errors:
            await self._events.log(
                SecurityEventType.SIGNUP_FAILED, Severity.LOW, "Sign-up rejected: invalid input", actor,
                {"errors": errors},
            )
            return Err(AuthRejection(RejectionReason.INVALID_INPUT, errors=tuple(errors)))

        leak = await self._leak_checker.check(password)
        if leak.value:
            await self._events.log(
                SecurityEventType.PASSWORD_LEAK_DETECTED, Severity.HIGH,
                "Sign-up rejected: password found in breach corpus", actor,
            )
            return Err(AuthRejection(RejectionReason.INVALID_INPUT, errors=(ERR_PASSWORD_LEAKED,)))

        now = self._clock()
        cleaned_name = sanitize(full_name) if full_name else None
        try:
            async with self._uow_factory() as uow:
                if await uow.user_repository.exists_by_email(email):
                    raise UserAlreadyExistsException(email)
                user = await uow.user_repository.create(
                    User(
                        id=None,
                        email=email,
                        hashed_password=PasswordService.hash_password(password),
                        full_name=cleaned_name or None,
                        role=ROLE_USER,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except UserAlreadyExistsException:
            await self._events.log(
                SecurityEventType.SIGNUP_FAILED, Severity.LOW, "Sign-up rejected: email already registered",
                actor,
            )
            return Err(AuthRejection(RejectionReason.EMAIL_TAKEN))

        actor = SecurityActor(user_id=user.id, email=user.email, ip_address=ip, user_agent=user_agent)
        await self._events.log(
            SecurityEventType.SIGNUP_SUCCESS, Severity.LOW, "User registered", actor,
            {"leak_check_degraded": leak.degraded},
        )
        return Ok(await self._open_session(user, ip, user_agent))

    # ---- 刷新 ----

    async def refresh(
        self,
        refresh_token: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[TokenPair, AuthRejection]:
        actor = SecurityActor(ip_address=ip, user_agent=user_agent)

        async def fail(detail: str, **extra: Any) -> Err[AuthRejection]:
            await self._events.log(
                SecurityEventType.TOKEN_REFRESH_FAILED, Severity.MEDIUM, "Token refresh rejected",
                actor, {"failure": detail, **extra},
            )
            return Err(AuthRejection(RejectionReason.TOKEN_INVALID))

        try:
            claims = self._tokens.verify_refresh_token(refresh_token)
        except TokenInvalidError:
            return await fail("invalid_token")
        actor = SecurityActor(user_id=claims.user_id, ip_address=ip, user_agent=user_agent)

        if await self._tokens.is_revoked(refresh_token):
            return await fail("revoked", session_id=claims.session_id)

        session = await self._sessions.get(claims.session_id)
        now = self._clock()
        if session is None or session.user_id != claims.user_id:
            return await fail("session_not_found", session_id=claims.session_id)
        if not session.is_valid(now):
            if await self._sessions.expire_if_stale(session.session_id):
                await self._log_session_expired(actor, session.session_id)
            return await fail("session_invalid", session_id=claims.session_id)
        if session.token_hash != hash_token(refresh_token):
            return await fail("token_superseded", session_id=claims.session_id)

        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            return await fail("user_unavailable", session_id=claims.session_id)

        access_token = self._tokens.issue_access_token(user.id, user.email, user.role, session.session_id)
        new_refresh = self._tokens.issue_refresh_token(user.id, session.session_id)
        if not await self._sessions.rotate_token(session.session_id, new_refresh):
            return await fail("session_invalid", session_id=claims.session_id)
        await self._tokens.revoke(refresh_token, "rotated")

        await self._events.log(
            SecurityEventType.TOKEN_REFRESHED, Severity.LOW, "Token pair refreshed", actor,
            {"session_id": session.session_id},
        )
        return Ok(
            TokenPair(
                access_token=access_token,
                refresh_token=new_refresh,
                expires_in=self._tokens.access_ttl_seconds,
                session_id=session.session_id,
            )
        )

    # ---- 登出 ----

    async def sign_out(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[None, AuthRejection]:
        try:
            claims = self._tokens.verify_access_token(access_token)
        except TokenInvalidError:
            return Err(AuthRejection(RejectionReason.TOKEN_INVALID))
        actor = SecurityActor(user_id=claims.user_id, email=claims.email, ip_address=ip, user_agent=user_agent)

        if refresh_token:
            try:
                refresh_claims = self._tokens.verify_refresh_token(refresh_token)
            except TokenInvalidError:
                refresh_claims = None
            if refresh_claims is None or refresh_claims.session_id != claims.session_id:
                logger.warning("signout_refresh_token_ignored", user_id=claims.user_id)
                refresh_token = None
        revoked = await self._tokens.revoke_pair(access_token, refresh_token, END_LOGOUT)

        await self._sessions.invalidate(claims.session_id, END_LOGOUT)
        await self._events.log(
            SecurityEventType.LOGOUT, Severity.LOW, "User signed out", actor,
            {"session_id": claims.session_id},
        )
        await self._events.log(
            SecurityEventType.TOKEN_REVOKED, Severity.LOW, "Tokens revoked on sign-out", actor,
            {"session_id": claims.session_id, "revoked": revoked},
        )
        return Ok(None)

    # ---- 请求认证 ----

    async def authenticate(
        self,
        access_token: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[Principal, AuthRejection]:
        """校验访问令牌并滑动续期会话"""
        rejected = Err(AuthRejection(RejectionReason.TOKEN_INVALID))
        try:
            claims = self._tokens.verify_access_token(access_token)
        except TokenInvalidError:
            return rejected
        if await self._tokens.is_revoked(access_token):
            logger.info("revoked_token_presented", user_id=claims.user_id, session_id=claims.session_id)
            return rejected

        session = await self._sessions.get(claims.session_id)
        if session is None or session.user_id != claims.user_id:
            return rejected
        if not session.is_valid(self._clock()):
            if await self._sessions.expire_if_stale(session.session_id):
                actor = SecurityActor(user_id=claims.user_id, ip_address=ip, user_agent=user_agent)
                await self._log_session_expired(actor, session.session_id)
            return rejected

        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            return rejected

        await self._sessions.touch(session.session_id)
        return Ok(
            Principal(
                user_id=user.id,
                email=user.email,
                role=user.role,
                session_id=session.session_id,
                access_token=access_token,
            )
        )

    async def _log_session_expired(self, actor: SecurityActor, session_id: str) -> None:
        await self._events.log(
            SecurityEventType.SESSION_EXPIRED, Severity.LOW, "Session expired", actor,
            {"session_id": session_id},
        )

    async def get_user(self, principal: Principal) -> User:
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(principal.user_id)
        if user is None:
            raise NotFoundException("User not found")
        return user

    # ---- 安全状态与管理 ----

    async def security_status(self, email: str, ip: Optional[str]) -> SecurityStatus:
        email = normalize_email(email)
        now = self._clock()
        status = await self._lockout.is_locked(email, ip)
        failures = status.failed_attempts if status.locked else await self._lockout.pending_failures(email, ip)
        max_attempts = self._lockout.policy.max_attempts
        quota = await self._rate_limiter.peek(AUTH, auth_identity(ip or "unknown", email))
        return SecurityStatus(
            email=email,
            locked=status.locked,
            locked_until=status.locked_until,
            retry_after=status.retry_after_seconds(now),
            failed_attempts=failures,
            remaining_attempts=0 if status.locked else max(0, max_attempts - failures),
            rate_limit_remaining=quota.remaining,
        )

    async def unlock(
        self,
        email: str,
        ip: Optional[str],
        admin: Principal,
    ) -> Result[bool, AuthRejection]:
        if not admin.is_admin:
            await self._events.log(
                SecurityEventType.ACCESS_DENIED, Severity.MEDIUM, "Non-admin attempted account unlock",
                SecurityActor(user_id=admin.user_id, email=admin.email),
                {"target_email": normalize_email(email)},
            )
            return Err(AuthRejection(RejectionReason.FORBIDDEN))

        cleared = await self._lockout.clear(email, ip)
        await self._events.log(
            SecurityEventType.ACCOUNT_UNLOCKED, Severity.MEDIUM, "Account unlocked by administrator",
            SecurityActor(user_id=admin.user_id, email=admin.email),
            {"target_email": normalize_email(email), "target_ip": ip, "was_locked": cleared},
        )
        return Ok(cleared)

    async def list_sessions(self, principal: Principal) -> list[Session]:
        return await self._sessions.list_active(principal.user_id)

    async def revoke_session(self, principal: Principal, session_id: str) -> Result[None, AuthRejection]:
        session = await self._sessions.get(session_id)
        if session is None or session.user_id != principal.user_id:
            return Err(AuthRejection(RejectionReason.NOT_FOUND))
        if not await self._sessions.invalidate(session_id, END_REVOKED):
            return Err(AuthRejection(RejectionReason.NOT_FOUND))
        await self._events.log(
            SecurityEventType.TOKEN_REVOKED, Severity.LOW, "Session revoked by owner",
            SecurityActor(user_id=principal.user_id, email=principal.email),
            {"session_id": session_id},
        )
        return Ok(None)

    async def recent_events(
        self,
        admin: Principal,
        limit: int = 50,
        event_type: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Result[list[SecurityEvent], AuthRejection]:
        if not admin.is_admin:
            return Err(AuthRejection(RejectionReason.FORBIDDEN))
        return Ok(await self._events.list_recent(limit=limit, event_type=event_type, user_id=user_id))

    # ---- 通知 ----

    def _dispatch_email(self, to: str, subject: str, body_html: str) -> None:
        """后台发送，失败只记录日志"""
        task = asyncio.create_task(self._send_email(to, subject, body_html))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_email(self, to: str, subject: str, body_html: str) -> None:
        try:
            await self._notifier.send_email(to, subject, body_html)
        except Exception as exc:
            logger.warning("notification_failed", to=to, subject=subject, error=str(exc))

    async def drain(self) -> None:
        """等待所有后台通知结束（关闭应用或测试时使用）"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def _lockout_notice_html(locked_until: Optional[datetime], ip: Optional[str]) -> str:
    until = locked_until.strftime("%Y-%m-%d %H:%M UTC") if locked_until else "a short while"
    return (
        "<p>We detected several failed sign-in attempts on your account"
        f" from IP address {ip or 'unknown'}.</p>"
        f"<p>Sign-in from that address is locked until {until}.</p>"
        "<p>If this was not you, please reset your password.</p>"
    )
