"""Per-IP failed login tracking for progressive lockout."""
from sqlalchemy import Column, String, DateTime, Boolean, Integer
from sqlalchemy.sql import func
from .base import Base


class IpLoginAttempt(Base):
    """Failed login counter and block state keyed by client IP."""
    __tablename__ = "ip_login_attempts"

    ip_address = Column(String(45), primary_key=True)  # IPv6 compatible
    failed_attempts = Column(Integer, nullable=False, default=0)
    blocked = Column(Boolean, nullable=False, default=False)
    blocked_until = Column(DateTime(timezone=True), nullable=True)  # None while blocked means permanent
    block_count = Column(Integer, nullable=False, default=0)  # Escalation level
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (
            f"<IpLoginAttempt(ip={self.ip_address}, failed={self.failed_attempts}, "
            f"blocked={self.blocked}, level={self.block_count})>"
        )

    @property
    def is_permanently_blocked(self) -> bool:
        return bool(self.blocked) and self.blocked_until is None
