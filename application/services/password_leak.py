"""
密码泄露检查 - 外部泄露库查询，查询失败时放行（fail open）
"""
from __future__ import annotations

from typing import Optional

from application.ports.notification import PasswordBreachPort
from core.logging_config import get_logger
from domain.common.result import Checked, Degraded, Ok


logger = get_logger(__name__)


async def check_password_leak(password: str, client: PasswordBreachPort) -> Checked[bool]:
    """返回 Ok(是否泄露)；查询失败返回 Degraded(False)"""
    try:
        leaked = await client.is_password_leaked(password)
    except Exception as exc:
        logger.warning("password_leak_check_degraded", error=type(exc).__name__)
        return Degraded(False, failures=("breach_lookup",))
    return Ok(bool(leaked))


class PasswordLeakChecker:
    """注册流程使用；未配置客户端或关闭开关时直接返回 Ok(False)"""

    def __init__(self, port: Optional[PasswordBreachPort], enabled: bool = True):
        self._port = port
        self._enabled = enabled and port is not None

    async def check(self, password: str) -> Checked[bool]:
        if not self._enabled:
            return Ok(False)
        return await check_password_leak(password, self._port)
