"""
安全事件数据库模型（只追加）
"""
from sqlalchemy import Column, Integer, String, DateTime, Index, JSON, Text

from .base import Base


class SecurityEventModel(Base):
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), unique=True, nullable=False, comment="事件ID")
    event_type = Column(String(50), nullable=False, index=True, comment="事件类型")
    severity = Column(String(20), nullable=False, comment="严重级别")
    description = Column(Text, nullable=False, comment="描述")

    user_id = Column(Integer, nullable=True, index=True, comment="用户ID（可空）")
    email = Column(String(255), nullable=True, comment="邮箱")
    ip_address = Column(String(64), nullable=True, comment="IP地址")
    user_agent = Column(Text, nullable=True, comment="User-Agent")

    event_metadata = Column("metadata", JSON, nullable=False, default=dict, comment="附加信息")
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True, comment="发生时间")

    __table_args__ = (
        Index("ix_security_events_type_time", "event_type", "occurred_at"),
    )
