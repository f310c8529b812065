"""
Notification and breach-lookup ports.

Both are out-of-band collaborators: the core never lets their failures
block an authentication flow.
"""
from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    async def send_email(self, to: str, subject: str, body_html: str) -> None: ...


class PasswordBreachPort(Protocol):
    async def is_password_leaked(self, password: str) -> bool:
        """Return True if the password appears in a breach corpus. May raise."""
        ...


__all__ = ["NotificationPort", "PasswordBreachPort"]
