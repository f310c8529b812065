"""
密码泄露库查询客户端（Pwned Passwords range API）

k-匿名查询：只发送 SHA-1 的前 5 位，返回同前缀的后缀列表，在本地比对。
明文密码和完整哈希都不会离开本进程。
"""
import hashlib
from typing import Optional

import httpx

from core.config import BreachCheckSettings

from .base import BaseAPIClient


class PwnedPasswordsClient(BaseAPIClient):

    def __init__(self, config: BreachCheckSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=1,
            retry_delay=0.2,
            headers={"Accept": "text/plain", "Add-Padding": "true"},
            transport=transport,
        )

    async def is_password_leaked(self, password: str) -> bool:
        digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
        prefix, suffix = digest[:5], digest[5:]
        response = await self.get(f"range/{prefix}")
        for line in response.text().splitlines():
            candidate, _, count = line.strip().partition(":")
            # 补齐（padding）条目的计数为 0
            if candidate.upper() == suffix and count.strip() not in ("", "0"):
                return True
        return False
