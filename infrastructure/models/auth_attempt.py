"""
认证尝试与账户锁定数据库模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, Text

from .base import Base


class AuthAttemptModel(Base):
    """每次认证尝试追加一行，不论成败"""
    __tablename__ = "auth_attempts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, comment="邮箱（小写）")
    ip_address = Column(String(64), nullable=False, comment="IP地址")
    success = Column(Boolean, nullable=False, comment="是否成功")
    failure_reason = Column(String(50), nullable=True, comment="失败原因")
    user_agent = Column(Text, nullable=True, comment="User-Agent")
    attempted_at = Column(DateTime(timezone=True), nullable=False, comment="尝试时间")

    __table_args__ = (
        Index("ix_auth_attempts_key_time", "email", "ip_address", "attempted_at"),
    )


class AccountLockoutModel(Base):
    """锁定记录，键为 (email, ip_address)"""
    __tablename__ = "account_lockouts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, comment="邮箱（小写）")
    ip_address = Column(String(64), nullable=False, comment="IP地址")
    locked_until = Column(DateTime(timezone=True), nullable=False, comment="锁定截止时间")
    trigger_count = Column(Integer, nullable=False, default=0, comment="触发锁定时的失败次数")
    created_at = Column(DateTime(timezone=True), nullable=False, comment="创建时间")
    cleared_at = Column(DateTime(timezone=True), nullable=True, comment="解除时间")

    __table_args__ = (
        Index("ix_account_lockouts_key", "email", "ip_address", "locked_until"),
    )

    def __repr__(self):
        return (
            f"<AccountLockoutModel(email='{self.email}', ip_address='{self.ip_address}', "
            f"locked_until={self.locked_until})>"
        )
