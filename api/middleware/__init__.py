from .request_id import RequestIDMiddleware, get_request_id, resolve_client_ip
from .logging import LoggingMiddleware
from .security import RateLimitMiddleware, SecurityHeadersMiddleware, SecurityMonitorMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "SecurityHeadersMiddleware",
    "SecurityMonitorMiddleware",
    "RateLimitMiddleware",
    "get_request_id",
    "resolve_client_ip",
]
