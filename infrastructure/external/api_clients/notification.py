"""
邮件通知客户端 - 安全通知（锁定提醒等）的带外投递
"""
from typing import Optional

import httpx

from application.ports.notification import NotificationPort
from core.config import NotificationSettings
from core.logging_config import get_logger

from .base import BaseAPIClient

logger = get_logger(__name__)


class EmailNotificationClient(BaseAPIClient):
    """通过 HTTP 邮件网关发送邮件"""

    def __init__(self, config: NotificationSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=2,
            retry_delay=0.5,
            auth_token=config.api_key or None,
            transport=transport,
        )
        self._sender = config.sender

    async def send_email(self, to: str, subject: str, body_html: str) -> None:
        await self.post(
            "emails",
            json_data={
                "from": self._sender,
                "to": [to],
                "subject": subject,
                "html": body_html,
            },
        )
        logger.info("notification_sent", to=to, subject=subject)


class NullNotifier(NotificationPort):
    """通知未启用时使用：只记录日志"""

    async def send_email(self, to: str, subject: str, body_html: str) -> None:
        logger.info("notification_skipped", to=to, subject=subject)
