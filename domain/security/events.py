"""
安全事件 - 审计记录的领域定义（只追加，不删除）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEventType(str, Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    SIGNUP_SUCCESS = "signup_success"
    SIGNUP_FAILED = "signup_failed"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    LOCKED_ACCOUNT_ACCESS = "locked_account_access"
    FRAUD_DETECTED = "fraud_detected"
    SUSPICIOUS_LOGIN = "suspicious_login"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SESSION_EXPIRED = "session_expired"
    TOKEN_REVOKED = "token_revoked"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    SUSPICIOUS_REQUEST = "suspicious_request"
    ACCESS_DENIED = "access_denied"
    PASSWORD_LEAK_DETECTED = "password_leak_detected"
    INTERNAL_ERROR = "internal_error"


def severity_for_score(score: int) -> Severity:
    """风险分到严重级别的映射"""
    if score >= 80:
        return Severity.CRITICAL
    if score >= 60:
        return Severity.HIGH
    if score >= 40:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass(frozen=True)
class SecurityActor:
    user_id: Optional[int] = None
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class SecurityEvent:
    """安全事件记录"""
    event_type: SecurityEventType
    severity: Severity
    description: str
    actor: SecurityActor = field(default_factory=SecurityActor)
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
