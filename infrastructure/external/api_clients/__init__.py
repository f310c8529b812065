"""
API客户端模块

提供与外部REST API集成的客户端实现
"""
from .base import BaseAPIClient, APIResponse, APIError
from .breach import PwnedPasswordsClient
from .notification import EmailNotificationClient, NullNotifier

__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "PwnedPasswordsClient",
    "EmailNotificationClient",
    "NullNotifier",
]
