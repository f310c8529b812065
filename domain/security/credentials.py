"""
凭据校验 - 纯函数，无副作用

- 邮箱格式（RFC-5322 简化版）
- 密码强度：一次性返回所有违反的规则，前端可同时展示
- 自由文本清洗：去除标签、脚本协议与内联事件处理器
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

MIN_PASSWORD_LENGTH = 8
SPECIAL_CHARACTERS = frozenset("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")
COMMON_PASSWORDS = frozenset({
    "password", "123456", "123456789", "qwerty", "abc123",
    "password123", "admin", "letmein", "welcome", "monkey",
})

ERR_LENGTH = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
ERR_UPPERCASE = "Password must contain at least one uppercase letter"
ERR_LOWERCASE = "Password must contain at least one lowercase letter"
ERR_DIGIT = "Password must contain at least one number"
ERR_SPECIAL = "Password must contain at least one special character"
ERR_COMMON = "Password is too common. Please choose a more unique password"

_TAG_RE = re.compile(r"<[^>]*>")
_UNSAFE_CHARS_RE = re.compile(r"[<>\"']")
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)


@dataclass(frozen=True)
class PasswordCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)


def validate_email(value: str) -> bool:
    if not value or not isinstance(value, str):
        return False
    return EMAIL_PATTERN.match(value) is not None


def validate_password_strength(password: str) -> PasswordCheck:
    """校验密码强度，返回全部违反项（顺序固定）"""
    password = password or ""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(ERR_LENGTH)
    if not any(c.isupper() for c in password):
        errors.append(ERR_UPPERCASE)
    if not any(c.islower() for c in password):
        errors.append(ERR_LOWERCASE)
    if not any(c.isdigit() for c in password):
        errors.append(ERR_DIGIT)
    if not any(c in SPECIAL_CHARACTERS for c in password):
        errors.append(ERR_SPECIAL)
    if password.lower() in COMMON_PASSWORDS:
        errors.append(ERR_COMMON)
    return PasswordCheck(valid=not errors, errors=errors)


def sanitize(value: str) -> str:
    """清洗自由文本，用于入库或回显之前"""
    if not value:
        return ""
    text = _TAG_RE.sub("", value)
    text = _UNSAFE_CHARS_RE.sub("", text)
    text = _JS_PROTOCOL_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    return text.strip()


__all__ = [
    "PasswordCheck",
    "validate_email",
    "validate_password_strength",
    "sanitize",
    "SPECIAL_CHARACTERS",
    "COMMON_PASSWORDS",
]
