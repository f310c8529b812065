"""
时间工具 - 统一 UTC 时间来源

服务通过构造参数接收 ``clock``（无参可调用对象，返回带时区的 UTC 时间），
测试中可替换为可控时钟。
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite 读回的时间不带时区，这里统一补齐为 UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = ["Clock", "utc_now", "ensure_utc"]
