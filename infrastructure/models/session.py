"""
用户会话数据库模型

会话失效只置 is_active=False 并记录结束原因，记录保留用于审计。
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text

from .base import Base


class UserSessionModel(Base):
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, index=True, nullable=False, comment="会话标识")
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="用户ID")

    # 只保存令牌哈希
    token_hash = Column(String(128), nullable=False, comment="刷新令牌SHA-256哈希")

    is_active = Column(Boolean, default=True, nullable=False, comment="是否有效")
    ip_address = Column(String(64), nullable=True, comment="IP地址（支持IPv6）")
    user_agent = Column(Text, nullable=True, comment="User-Agent")

    created_at = Column(DateTime(timezone=True), nullable=False, comment="创建时间")
    last_activity = Column(DateTime(timezone=True), nullable=False, comment="最近活动时间")
    expires_at = Column(DateTime(timezone=True), nullable=False, comment="空闲过期时间")
    absolute_expires_at = Column(DateTime(timezone=True), nullable=False, comment="绝对过期时间")
    ended_at = Column(DateTime(timezone=True), nullable=True, comment="结束时间")
    end_reason = Column(String(50), nullable=True, comment="结束原因")

    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "is_active"),
    )

    def __repr__(self):
        return (
            f"<UserSessionModel(session_id='{self.session_id}', user_id={self.user_id}, "
            f"is_active={self.is_active})>"
        )
